"""Mutation coordinator: document changes → staggered block processing.

// [LAW:single-enforcer] Only the coordinator decides when a raw block is processed
//   after startup; the pipeline's process() is its single sink.

Two inputs feed one queue:
  - mutation batches from Document.observe (inserted candidates and text
    changes on raw blocks);
  - a periodic fallback scan for anything the mutation path missed.

Self-induced writes never re-enter: anything inside a .function-block is
filtered structurally, and while a batch drains the coordinator only queues.
It re-arms a short delay after the last item.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from snarfx.hot_reload import HotReloadStore

from streamcall.app.document import Document, Element, MutationRecord
from streamcall.app.renderer import BLOCK_ID_ATTR, FUNCTION_BLOCK, BlockRegistry
from streamcall.app.timers import TimerHandle, Timers
from streamcall.core.scanner import contains_function_calls

logger = logging.getLogger(__name__)

PROCESSED_ATTR = "data-processed"
RAW_TAG = "pre"
REARM_DELAY_S = 0.1
FALLBACK_FIRST_S = 1.0


def _raw_for(node: Element) -> Element | None:
    """The raw block a node belongs to, or None for rendered/self-owned nodes."""
    if node.closest(cls=FUNCTION_BLOCK) is not None:
        return None
    return node.closest(tag=RAW_TAG)


class MutationCoordinator:
    def __init__(
        self,
        document: Document,
        registry: BlockRegistry,
        settings: HotReloadStore,
        timers: Timers,
        *,
        process: Callable[[Element], object],
        reoffer: Callable[[], int],
        rearm_delay: float = REARM_DELAY_S,
        fallback_first: float = FALLBACK_FIRST_S,
    ) -> None:
        self._document = document
        self._registry = registry
        self._settings = settings
        self._timers = timers
        self._process = process
        self._reoffer = reoffer
        self._rearm_delay = rearm_delay
        self._fallback_first = fallback_first

        self._queue: list[Element] = []
        self._batch_active = False
        self._drain_timer: TimerHandle | None = None
        self._fallback: TimerHandle | None = None
        self._dispose_observer: Callable[[], None] | None = None

    @property
    def suppressed(self) -> bool:
        """True while a batch is draining."""
        return self._batch_active

    @property
    def running(self) -> bool:
        return self._dispose_observer is not None

    def pending(self) -> list[Element]:
        return list(self._queue)

    # ─── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        if self._dispose_observer is not None:
            return
        self._dispose_observer = self._document.observe(self._on_mutations)
        interval = float(self._settings.get("fallback_scan_interval"))
        self._fallback = self._timers.call_every(interval, self.scan_once, first=self._fallback_first)
        logger.debug("coordinator started (fallback every %.1fs)", interval)

    def stop(self) -> None:
        if self._dispose_observer is not None:
            self._dispose_observer()
            self._dispose_observer = None
        for handle in (self._fallback, self._drain_timer):
            if handle is not None:
                handle.cancel()
        self._fallback = None
        self._drain_timer = None
        self._queue.clear()
        self._batch_active = False

    # ─── Mutation path ────────────────────────────────────────────────

    def _on_mutations(self, records: list[MutationRecord]) -> None:
        for record in records:
            if record.kind == "inserted":
                for node in record.nodes:
                    for el in (node, *node.iter_descendants()):
                        if el.tag == RAW_TAG:
                            self._offer_candidate(el)
            elif record.kind == "text":
                raw = _raw_for(record.target)
                if raw is not None:
                    self._offer_candidate(raw)
        if self._queue and not self._batch_active:
            self._begin_batch()

    def _offer_candidate(self, raw: Element) -> None:
        """Known raw blocks always requeue; new ones need a directive in their text."""
        if not raw.is_attached or raw.closest(cls=FUNCTION_BLOCK) is not None:
            return
        if raw.has_attr(BLOCK_ID_ATTR):
            self._enqueue(raw)
            return
        if contains_function_calls(raw.text_content()):
            raw.set_attr(PROCESSED_ATTR, "true")
            self._enqueue(raw)

    def _enqueue(self, raw: Element) -> None:
        if not any(item is raw for item in self._queue):
            self._queue.append(raw)

    # ─── Batches ──────────────────────────────────────────────────────

    def _begin_batch(self) -> None:
        self._batch_active = True
        self._drain_timer = self._timers.call_later(0, self._drain)

    def _drain(self) -> None:
        self._drain_timer = None
        if not self._queue:
            self._drain_timer = self._timers.call_later(self._rearm_delay, self._rearm)
            return
        raw = self._queue.pop(0)
        if raw.is_attached:
            try:
                self._process(raw)
            except Exception:
                logger.exception("processing raw block %s failed", raw.get_attr(BLOCK_ID_ATTR, "?"))
        stagger = float(self._settings.get("stagger_delay"))
        self._drain_timer = self._timers.call_later(stagger, self._drain)

    def _rearm(self) -> None:
        self._drain_timer = None
        self._batch_active = False
        if self._queue:
            self._begin_batch()

    # ─── Fallback scan ────────────────────────────────────────────────

    def scan_once(self) -> int:
        """Queue raw blocks the mutation path missed; re-offer controls. Returns queued count."""
        queued = 0
        for raw in self._document.query(tag=RAW_TAG):
            if raw.closest(cls=FUNCTION_BLOCK) is not None:
                continue
            text = raw.text_content()
            block_id = raw.get_attr(BLOCK_ID_ATTR)
            if block_id is not None:
                block = self._registry.get(block_id)
                stale = block is None or block.last_text != text.strip()
            else:
                stale = contains_function_calls(text)
            if stale:
                raw.set_attr(PROCESSED_ATTR, "true")
                self._enqueue(raw)
                queued += 1
        if self._queue and not self._batch_active:
            self._begin_batch()
        if self._settings.get("auto_execute"):
            try:
                self._reoffer()
            except Exception:
                logger.exception("re-offering action controls failed")
        if queued:
            logger.debug("fallback scan queued %d raw block(s)", queued)
        return queued
