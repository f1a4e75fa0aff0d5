"""Block renderer: parsed calls → identity-preserving rendered blocks.

// [LAW:one-source-of-truth] BlockRegistry owns block id → RenderedBlock.
// [LAW:single-enforcer] Only this module writes inside a .function-block,
//   apart from the executor's status/result nodes.

Per block id the lifecycle is absent → loading → complete (loading ⇄ complete
tolerated). Every scan patches only what changed: existing nodes are mutated
in place, new parameters are appended, and the raw-content toggle and the
action control are added once, on first completion.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

import streamcall.core.scanner as scanner
from streamcall.app.document import Document, Element
from streamcall.app.timers import TimerHandle, Timers
from streamcall.core.signature import generate_content_signature

logger = logging.getLogger(__name__)

BLOCK_ID_ATTR = "data-block-id"
FUNCTION_BLOCK = "function-block"
LOADING = "function-loading"
COMPLETE = "function-complete"
STREAMING_NAME = "streaming-param-name"
STREAMING_ATTR = "data-streaming"
EXECUTE_BUTTON = "execute-button"
RAW_TOGGLE = "raw-toggle"

STREAMING_CLEAR_DELAY_S = 3.0


# ─── State ───────────────────────────────────────────────────────────────────


@dataclass
class ParamNodes:
    name_el: Element
    value_el: Element
    clear_timer: TimerHandle | None = None


@dataclass
class RenderedBlock:
    """Live subtree for one RawBlock; exactly one per block id."""

    block_id: str
    root: Element
    name_el: Element
    name_text: Element
    call_id_badge: Element
    params: Element
    buttons: Element
    spinner: Element | None = None
    language_tag: Element | None = None
    param_nodes: dict[str, ParamNodes] = field(default_factory=dict)
    raw_toggle: Element | None = None
    raw_panel: Element | None = None
    execute_button: Element | None = None
    raw: Element | None = None
    last_text: str = ""

    @property
    def is_complete(self) -> bool:
        return self.root.has_class(COMPLETE)


@dataclass(frozen=True)
class TrackedCall:
    """One call currently tracked, as exposed to the shell UI."""

    block_id: str
    function_name: str
    call_id: str
    is_complete: bool
    content_signature: str | None = None
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RenderResult:
    block: RenderedBlock
    call: scanner.ParsedCall
    is_new: bool
    just_completed: bool
    action_created: bool
    content_signature: str | None = None
    # An existing, still-enabled action control now targets a different call.
    action_changed: bool = False


class BlockRegistry:
    """Process-scoped rendered-block registry.

    Created at startup; entries leave only through clear().
    """

    def __init__(self) -> None:
        self._blocks: dict[str, RenderedBlock] = {}
        self._parsers: dict[str, scanner.CallParser] = {}
        self._calls: dict[str, TrackedCall] = {}
        self._cleared_call_ids: set[str] = set()
        self._pre_existing: set[str] = set()

    def new_block_id(self) -> str:
        return f"block-{uuid.uuid4().hex[:12]}"

    def get(self, block_id: str) -> RenderedBlock | None:
        return self._blocks.get(block_id)

    def put(self, block: RenderedBlock) -> None:
        self._blocks[block.block_id] = block

    def blocks(self) -> list[RenderedBlock]:
        return list(self._blocks.values())

    def mark_pre_existing(self, block_id: str) -> None:
        """Record a block that was already streaming when tracking began."""
        self._pre_existing.add(block_id)

    def is_pre_existing(self, block_id: str) -> bool:
        return block_id in self._pre_existing

    def parser_for(self, block_id: str) -> scanner.CallParser:
        parser = self._parsers.get(block_id)
        if parser is None:
            parser = self._parsers[block_id] = scanner.CallParser(block_id)
        return parser

    # ─── Tracked calls ────────────────────────────────────────────────

    def track(self, call: TrackedCall) -> None:
        if call.call_id in self._cleared_call_ids:
            return
        self._calls[call.block_id] = call

    def tracked_calls(self) -> list[TrackedCall]:
        return list(self._calls.values())

    def tracked_call_ids(self) -> list[str]:
        return list(dict.fromkeys(call.call_id for call in self._calls.values()))

    def is_cleared(self, call_id: str) -> bool:
        return call_id in self._cleared_call_ids

    def clear(self, call_ids: list[str] | None = None) -> list[str]:
        """Stop tracking calls; returns the affected block ids.

        Cleared call ids are remembered so later scans do not track them again.
        """
        doomed = set(self.tracked_call_ids() if call_ids is None else call_ids)
        self._cleared_call_ids |= doomed
        block_ids = [bid for bid, call in self._calls.items() if call.call_id in doomed]
        for bid in block_ids:
            del self._calls[bid]
        return block_ids


# ─── Renderer ────────────────────────────────────────────────────────────────


class BlockRenderer:
    def __init__(
        self,
        document: Document,
        registry: BlockRegistry,
        timers: Timers,
        *,
        streaming_clear_delay: float = STREAMING_CLEAR_DELAY_S,
        quiet_pre_existing: bool = False,
    ) -> None:
        self._document = document
        self._registry = registry
        self._timers = timers
        self._streaming_clear_delay = streaming_clear_delay
        # Blocks already incomplete at startup get no loading state or spinner.
        self._quiet_pre_existing = quiet_pre_existing

    def render(self, raw: Element) -> RenderResult | None:
        """Paint or patch the rendered block for ``raw``. None when not a call block."""
        text = raw.text_content().strip()
        found = scanner.scan(text)
        if not found.has_function_calls or raw.closest(cls=FUNCTION_BLOCK) is not None:
            return None

        block_id = raw.get_attr(BLOCK_ID_ATTR) or self._registry.new_block_id()
        block = self._registry.get(block_id) or self._adopt(block_id)
        is_new = block is None
        if is_new and raw.parent is None:
            logger.warning("raw block %s has no parent; cannot insert rendered block", block_id)
            return None
        raw.set_attr(BLOCK_ID_ATTR, block_id)

        call = self._registry.parser_for(block_id).feed(text)

        previous_complete: bool | None = None
        if block is None:
            block = self._create_skeleton(block_id, call)
            self._registry.put(block)
            raw.parent.insert_before(block.root, raw)
            raw.hidden = True
        else:
            previous_complete = block.is_complete
        block.raw = raw
        block.last_text = text

        self._update_lifecycle(block, call.is_complete, previous_complete)
        self._update_header(block, call)
        self._update_params(block, call)

        signature = None
        action_created = False
        action_changed = False
        if call.is_complete:
            signature = generate_content_signature(call.display_name, call.arguments)
            if block.raw_toggle is None:
                self._add_raw_toggle(block, text)
            elif block.raw_panel is not None:
                block.raw_panel.text = text
            if block.execute_button is None:
                self._add_execute_button(block, call, signature)
                action_created = True
            else:
                action_changed = self._retarget_execute_button(block, call, signature)

        self._registry.track(
            TrackedCall(
                block_id=block_id,
                function_name=call.display_name,
                call_id=call.call_id,
                is_complete=call.is_complete,
                content_signature=signature,
                arguments=dict(call.arguments) if call.is_complete else {},
            )
        )
        return RenderResult(
            block=block,
            call=call,
            is_new=is_new,
            just_completed=call.is_complete and previous_complete is not True,
            action_created=action_created,
            content_signature=signature,
            action_changed=action_changed,
        )

    # ─── Skeleton ─────────────────────────────────────────────────────

    def _create_skeleton(self, block_id: str, call: scanner.ParsedCall) -> RenderedBlock:
        root = Element("div", classes=[FUNCTION_BLOCK], attrs={BLOCK_ID_ATTR: block_id})
        language_tag = None
        if call.language_tag:
            language_tag = root.append(Element("div", classes=["language-tag"], text=call.language_tag))
        name_el = root.append(Element("div", classes=["function-name"]))
        name_text = name_el.append(Element("span", classes=["function-name-text"], text=call.display_name))
        badge = name_el.append(Element("span", classes=["call-id"], text=call.call_id))
        params = root.append(Element("div", classes=["function-params"]))
        buttons = root.append(Element("div", classes=["function-buttons"]))
        return RenderedBlock(
            block_id=block_id,
            root=root,
            name_el=name_el,
            name_text=name_text,
            call_id_badge=badge,
            params=params,
            buttons=buttons,
            language_tag=language_tag,
        )

    def _adopt(self, block_id: str) -> RenderedBlock | None:
        """Rebuild registry state from a rendered element already in the document."""
        root = self._document.query_one(cls=FUNCTION_BLOCK, attrs={BLOCK_ID_ATTR: block_id})
        if root is None:
            return None
        name_el = root.query_one(cls="function-name")
        name_text = root.query_one(cls="function-name-text")
        badge = root.query_one(cls="call-id")
        params = root.query_one(cls="function-params")
        buttons = root.query_one(cls="function-buttons")
        if None in (name_el, name_text, badge, params, buttons):
            logger.warning("discarding malformed rendered block %s", block_id)
            root.remove()
            return None
        block = RenderedBlock(
            block_id=block_id,
            root=root,
            name_el=name_el,
            name_text=name_text,
            call_id_badge=badge,
            params=params,
            buttons=buttons,
            spinner=root.query_one(cls="spinner"),
            language_tag=root.query_one(cls="language-tag"),
            raw_toggle=root.query_one(cls=RAW_TOGGLE),
            raw_panel=root.query_one(cls="raw-content"),
            execute_button=root.query_one(cls=EXECUTE_BUTTON),
        )
        for value_el in params.query(cls="param-value"):
            name = value_el.get_attr("data-param-name") or ""
            name_match = params.query_one(
                cls="param-name", attrs={"data-param-id": value_el.get_attr("data-param-id")}
            )
            if name and name_match is not None:
                block.param_nodes[name] = ParamNodes(name_match, value_el)
        self._registry.put(block)
        logger.debug("re-adopted rendered block %s", block_id)
        return block

    # ─── Patching ─────────────────────────────────────────────────────

    def _update_lifecycle(self, block: RenderedBlock, complete: bool, previous: bool | None) -> None:
        if previous is None:
            if not complete and self._quiet_pre_existing and self._registry.is_pre_existing(block.block_id):
                return
            block.root.add_class(COMPLETE if complete else LOADING)
            if not complete:
                block.spinner = block.name_el.append(Element("div", classes=["spinner"]))
            return
        if complete and not previous:
            block.root.remove_class(LOADING)
            block.root.add_class(COMPLETE)
            if block.spinner is not None:
                block.spinner.remove()
                block.spinner = None
        elif previous and not complete:
            logger.debug("block %s reverted to loading", block.block_id)
            block.root.remove_class(COMPLETE)
            block.root.add_class(LOADING)

    def _update_header(self, block: RenderedBlock, call: scanner.ParsedCall) -> None:
        block.name_text.text = call.display_name
        block.call_id_badge.text = call.call_id
        if call.language_tag and block.language_tag is None:
            block.language_tag = Element("div", classes=["language-tag"], text=call.language_tag)
            block.root.insert_before(block.language_tag, block.name_el)

    def _update_params(self, block: RenderedBlock, call: scanner.ParsedCall) -> None:
        current = {param.name for param in call.parameters}
        for name in [n for n in block.param_nodes if n not in current]:
            stale = block.param_nodes.pop(name)
            if stale.clear_timer is not None:
                stale.clear_timer.cancel()
            stale.name_el.remove()
            stale.value_el.remove()
        for param in call.parameters:
            nodes = block.param_nodes.get(param.name)
            if nodes is None:
                param_id = f"{block.block_id}-{param.name}"
                nodes = ParamNodes(
                    name_el=block.params.append(
                        Element("div", classes=["param-name"], text=param.name, attrs={"data-param-id": param_id})
                    ),
                    value_el=block.params.append(
                        Element(
                            "div",
                            classes=["param-value"],
                            attrs={"data-param-id": param_id, "data-param-name": param.name},
                        )
                    ),
                )
                block.param_nodes[param.name] = nodes
            nodes.value_el.text = param.value
            nodes.value_el.set_attr("data-param-value", json.dumps(param.value))
            if param.streaming and not call.is_complete:
                self._mark_streaming(nodes)
            else:
                self._clear_streaming(nodes)

    def _mark_streaming(self, nodes: ParamNodes) -> None:
        nodes.name_el.add_class(STREAMING_NAME)
        nodes.value_el.set_attr(STREAMING_ATTR, "true")
        if nodes.clear_timer is not None:
            nodes.clear_timer.cancel()

        def _quiet() -> None:
            nodes.clear_timer = None
            if nodes.name_el.is_attached:
                nodes.name_el.remove_class(STREAMING_NAME)
                nodes.value_el.remove_attr(STREAMING_ATTR)

        nodes.clear_timer = self._timers.call_later(self._streaming_clear_delay, _quiet)

    def _clear_streaming(self, nodes: ParamNodes) -> None:
        if nodes.clear_timer is not None:
            nodes.clear_timer.cancel()
            nodes.clear_timer = None
        nodes.name_el.remove_class(STREAMING_NAME)
        nodes.value_el.remove_attr(STREAMING_ATTR)

    # ─── Controls ─────────────────────────────────────────────────────

    def _add_raw_toggle(self, block: RenderedBlock, text: str) -> None:
        panel = Element("pre", classes=["raw-content"], text=text)
        panel.hidden = True
        toggle = Element("button", classes=[RAW_TOGGLE], text="Show raw")

        def _toggle(_el: Element) -> None:
            panel.hidden = not panel.hidden
            toggle.text = "Show raw" if panel.hidden else "Hide raw"

        toggle.on_click = _toggle
        block.raw_toggle = block.buttons.append(toggle)
        block.raw_panel = block.root.append(panel)

    def _add_execute_button(self, block: RenderedBlock, call: scanner.ParsedCall, signature: str) -> None:
        button = Element(
            "button",
            classes=[EXECUTE_BUTTON],
            text="Run",
            attrs={
                BLOCK_ID_ATTR: block.block_id,
                "data-function-name": call.display_name,
                "data-call-id": call.call_id,
                "data-signature": signature,
            },
        )
        block.execute_button = block.buttons.append(button)

    def _retarget_execute_button(self, block: RenderedBlock, call: scanner.ParsedCall, signature: str) -> bool:
        """Point an unused action control at the call now in the raw block.

        A control that already ran keeps describing the call it ran.
        """
        button = block.execute_button
        if button is None or button.disabled:
            return False
        target = {
            "data-function-name": call.display_name,
            "data-call-id": call.call_id,
            "data-signature": signature,
        }
        if all(button.get_attr(k) == v for k, v in target.items()):
            return False
        for key, value in target.items():
            button.set_attr(key, value)
        logger.debug("block %s now targets %s:%s", block.block_id, call.display_name, call.call_id)
        return True
