"""Rich rendering for the host document.

Pure functions: Element tree in, Rich renderables out. Hidden elements (raw
blocks replaced by their rendered block) are skipped, so the output is what
a reader of the page would see.

// [LAW:one-way-deps] Reads document state only; never mutates it.
"""

from __future__ import annotations

from rich.console import ConsoleRenderable, Group
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from streamcall.app.document import Document, Element
from streamcall.app.renderer import COMPLETE, FUNCTION_BLOCK, STREAMING_NAME
from streamcall.io.execution_store import ExecutionRecord

# ─── Styles ──────────────────────────────────────────────────────────────────

NAME_STYLE = "bold cyan"
CALL_ID_STYLE = "dim"
PARAM_NAME_STYLE = "bold"
STREAMING_STYLE = "bold yellow"
DONE_STYLE = "green"
ERROR_STYLE = "bold red"
LOADING_BORDER = "yellow"
COMPLETE_BORDER = "cyan"

# Param values longer than this are cut in the block view.
VALUE_PREVIEW_LIMIT = 400


def _preview(value: str) -> str:
    if len(value) <= VALUE_PREVIEW_LIMIT:
        return value
    return value[: VALUE_PREVIEW_LIMIT - 3] + "..."


def _child(root: Element, cls: str) -> Element | None:
    return root.query_one(cls=cls)


# ─── Function block ──────────────────────────────────────────────────────────


def render_function_header(root: Element) -> Text:
    name_el = _child(root, "function-name-text")
    call_id_el = _child(root, "call-id")
    t = Text()
    lang = _child(root, "language-tag")
    if lang is not None and lang.text:
        t.append(f"{lang.text} ", style="dim italic")
    t.append(name_el.text if name_el is not None else "function", style=NAME_STYLE)
    if call_id_el is not None and call_id_el.text:
        t.append(f"  [{call_id_el.text}]", style=CALL_ID_STYLE)
    if _child(root, "spinner") is not None:
        t.append("  …", style=STREAMING_STYLE)
    return t


def render_params(root: Element) -> Text:
    params = _child(root, "function-params")
    t = Text()
    if params is None:
        return t
    name_el: Element | None = None
    for el in params.children:
        if el.has_class("param-name"):
            name_el = el
            continue
        if not el.has_class("param-value"):
            continue
        streaming = name_el is not None and name_el.has_class(STREAMING_NAME)
        if t:
            t.append("\n")
        t.append(f"{el.get_attr('data-param-name') or '?'}: ", style=STREAMING_STYLE if streaming else PARAM_NAME_STYLE)
        t.append(_preview(el.text))
        if streaming:
            t.append(" ▍", style=STREAMING_STYLE)
        name_el = None
    return t


def render_status(root: Element) -> Text | None:
    button = _child(root, "execute-button")
    if button is None:
        return None
    t = Text()
    label = button.text or "Run"
    style = ERROR_STYLE if label == "Failed" else (DONE_STYLE if button.disabled else "bold")
    t.append(f"[{label}]", style=style)
    toggle = _child(root, "raw-toggle")
    if toggle is not None:
        t.append(f"  [{toggle.text}]", style="dim")
    return t


def render_function_block(root: Element) -> ConsoleRenderable:
    """Panel for one .function-block element."""
    parts: list[ConsoleRenderable] = []
    params = render_params(root)
    if params:
        parts.append(params)
    status = render_status(root)
    if status is not None:
        parts.append(status)
    raw = _child(root, "raw-content")
    if raw is not None and not raw.hidden:
        parts.append(Syntax(raw.text, "xml", word_wrap=True))
    result = _child(root, "function-result")
    if result is not None:
        style = ERROR_STYLE if result.has_class("function-error") else ""
        parts.append(Text(result.text, style=style))
    border = COMPLETE_BORDER if root.has_class(COMPLETE) else LOADING_BORDER
    return Panel(
        Group(*parts) if parts else Text(""),
        title=render_function_header(root),
        title_align="left",
        border_style=border,
    )


# ─── Page ────────────────────────────────────────────────────────────────────


def render_raw_block(pre: Element) -> ConsoleRenderable:
    return Panel(Text(pre.text_content()), border_style="dim")


def render_element(el: Element) -> list[ConsoleRenderable]:
    if el.hidden:
        return []
    if el.has_class(FUNCTION_BLOCK):
        return [render_function_block(el)]
    if el.tag == "pre":
        return [render_raw_block(el)]
    out: list[ConsoleRenderable] = []
    if el.text:
        out.append(Text(el.text.rstrip("\n")))
    for child in el.children:
        out.extend(render_element(child))
    return out


def render_document(document: Document) -> ConsoleRenderable:
    parts: list[ConsoleRenderable] = []
    for child in document.children:
        parts.extend(render_element(child))
    return Group(*parts)


# ─── Executions ──────────────────────────────────────────────────────────────


def render_execution(record: ExecutionRecord) -> Text:
    t = Text()
    t.append("✓ " if not record.error else "✗ ", style=DONE_STYLE if not record.error else ERROR_STYLE)
    t.append(record.function_name, style=NAME_STYLE)
    t.append(f" [{record.call_id}]", style=CALL_ID_STYLE)
    t.append(f" {record.content_signature}", style="dim")
    if record.error:
        t.append(f"  {record.error}", style=ERROR_STYLE)
    return t
