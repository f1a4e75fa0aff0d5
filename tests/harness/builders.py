"""Shared builders for call text, pipelines and raw blocks."""

from __future__ import annotations

from snarfx.hot_reload import HotReloadStore

import streamcall.app.settings_store as settings_store
from streamcall.app.document import Document, Element
from streamcall.app.executor import HandlerRegistry
from streamcall.app.pipeline import CallPipeline
from streamcall.io.execution_store import ExecutionStore
from tests.harness.clock import FakeTimers


def make_call_text(
    name: str | None = "search",
    call_id: str | None = "c1",
    params: dict | None = None,
    *,
    language: str | None = None,
    complete: bool = True,
) -> str:
    """Build a function_calls directive.

    complete=False drops every closing tag after the last parameter's value.
    """
    params = {"q": "hello"} if params is None else params
    attrs = ""
    if name is not None:
        attrs += f' name="{name}"'
    if call_id is not None:
        attrs += f' call_id="{call_id}"'
    body = "".join(f'<parameter name="{k}">{v}</parameter>' for k, v in params.items())
    text = f"<function_calls><invoke{attrs}>{body}"
    if complete:
        text += "</invoke></function_calls>"
    elif body.endswith("</parameter>"):
        text = text[: -len("</parameter>")]
    if language:
        text = f"{language}\n{text}"
    return text


def make_settings(**overrides) -> HotReloadStore:
    return settings_store.create(overrides, load_from_disk=False)


def make_pipeline(
    *,
    auto_execute: bool = True,
    store: ExecutionStore | None = None,
    handlers: HandlerRegistry | None = None,
    start: bool = True,
) -> tuple[CallPipeline, FakeTimers]:
    timers = FakeTimers()
    pipeline = CallPipeline(
        timers,
        settings=make_settings(auto_execute=auto_execute),
        store=store if store is not None else ExecutionStore(),
        handlers=handlers,
    )
    if start:
        pipeline.start()
    return pipeline, timers


def add_raw_block(document: Document, text: str = "") -> Element:
    """Append a message holding one raw block; returns the raw block."""
    message = document.append(Element("div", classes=["message"]))
    return message.append(Element("pre", text=text))


def rendered_root(document: Document, block_id: str) -> Element | None:
    return document.query_one(cls="function-block", attrs={"data-block-id": block_id})
