"""Pipeline wiring: one object owning every process-scoped component.

// [LAW:one-source-of-truth] CallPipeline is created once at startup; its ledger
//   and registry are the only tracking state and live until clear_tools().
// [LAW:one-way-deps] tui/ and cli depend on this module, never the reverse.
"""

from __future__ import annotations

import logging

from snarfx.hot_reload import HotReloadStore

import streamcall.app.settings_store as settings_store
import streamcall.core.scanner as scanner
from streamcall.app.coordinator import RAW_TAG, MutationCoordinator
from streamcall.app.document import Document, Element
from streamcall.app.executor import ExecutionRequest, Executor, HandlerRegistry
from streamcall.app.renderer import (
    BLOCK_ID_ATTR,
    FUNCTION_BLOCK,
    BlockRegistry,
    BlockRenderer,
    RenderResult,
    TrackedCall,
)
from streamcall.app.scheduler import AutoExecutionScheduler, ScheduleOutcome
from streamcall.app.timers import Timers
from streamcall.core.ledger import ExecutionLedger
from streamcall.io.execution_store import ExecutionStore

logger = logging.getLogger(__name__)


class CallPipeline:
    def __init__(
        self,
        timers: Timers,
        *,
        settings: HotReloadStore | None = None,
        store: ExecutionStore | None = None,
        handlers: HandlerRegistry | None = None,
        document: Document | None = None,
        quiet_pre_existing: bool = False,
    ) -> None:
        self.timers = timers
        self.settings = settings or settings_store.create(load_from_disk=False)
        self.store = store if store is not None else ExecutionStore()
        self.document = document if document is not None else Document(timers)
        self.registry = BlockRegistry()
        self.ledger = ExecutionLedger(
            self.store, legacy_lookup=bool(self.settings.get("legacy_ledger_lookup"))
        )
        self.renderer = BlockRenderer(
            self.document, self.registry, timers, quiet_pre_existing=quiet_pre_existing
        )
        self.executor = Executor(self.document, self.ledger, self.store, handlers)
        self.scheduler = AutoExecutionScheduler(
            self.document, self.registry, self.ledger, self.executor, self.settings, timers
        )
        self.coordinator = MutationCoordinator(
            self.document,
            self.registry,
            self.settings,
            timers,
            process=self.process,
            reoffer=self.reoffer,
        )

    # ─── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        self.mark_pre_existing()
        self.coordinator.start()

    def stop(self) -> None:
        self.coordinator.stop()
        self.scheduler.cancel()

    def mark_pre_existing(self) -> int:
        """Tag raw blocks that already hold an unfinished call. Returns how many."""
        marked = 0
        for raw in self.document.query(tag=RAW_TAG):
            if raw.closest(cls=FUNCTION_BLOCK) is not None:
                continue
            found = scanner.scan(raw.text_content().strip())
            if not found.has_function_calls or found.is_complete:
                continue
            block_id = raw.get_attr(BLOCK_ID_ATTR)
            if block_id is None:
                block_id = self.registry.new_block_id()
                raw.set_attr(BLOCK_ID_ATTR, block_id)
            self.registry.mark_pre_existing(block_id)
            marked += 1
        if marked:
            logger.debug("%d raw block(s) were already streaming at startup", marked)
        return marked

    # ─── Processing ───────────────────────────────────────────────────

    def process(self, raw: Element) -> RenderResult | None:
        """Render one raw block; a new or retargeted action control goes to the scheduler."""
        result = self.renderer.render(raw)
        if result is None or not (result.action_created or result.action_changed):
            return result
        request = self._request_for(result)
        self.executor.bind(result.block.execute_button, request)
        if result.action_changed:
            outcome = self.scheduler.retarget(request)
            logger.debug("block %s retargeted to %s; scheduler: %s", request.block_id, request.call_id, outcome.value)
        else:
            outcome = self.scheduler.schedule(request)
            logger.debug("block %s complete; scheduler: %s", request.block_id, outcome.value)
        return result

    def _request_for(self, result: RenderResult) -> ExecutionRequest:
        call = result.call
        return ExecutionRequest(
            block_id=result.block.block_id,
            function_name=call.display_name,
            call_id=call.call_id,
            content_signature=result.content_signature or "",
            arguments=dict(call.arguments) if call.is_complete else {},
        )

    def reoffer(self) -> int:
        """Offer every known action control to the scheduler again."""
        offered = 0
        for block in self.registry.blocks():
            request = self.executor.request_for(block.block_id)
            if request is None or block.execute_button is None or block.execute_button.disabled:
                continue
            if self.scheduler.is_active(block.block_id) or self.scheduler.is_exhausted(block.block_id):
                continue
            outcome = self.scheduler.schedule(request)
            if outcome in (ScheduleOutcome.TRIGGERED, ScheduleOutcome.RETRYING):
                offered += 1
        return offered

    # ─── Manual activation ────────────────────────────────────────────

    def pending_calls(self) -> list[TrackedCall]:
        """Complete calls whose action control is still actionable."""
        pending = []
        for call in self.registry.tracked_calls():
            block = self.registry.get(call.block_id)
            if call.is_complete and block is not None and block.execute_button is not None:
                if not block.execute_button.disabled:
                    pending.append(call)
        return pending

    def run_call(self, block_id: str) -> bool:
        block = self.registry.get(block_id)
        if block is None or block.execute_button is None:
            return False
        return block.execute_button.click()

    def run_latest_pending(self) -> bool:
        pending = self.pending_calls()
        return self.run_call(pending[-1].block_id) if pending else False

    # ─── Clear tools ──────────────────────────────────────────────────

    def tracked_call_ids(self) -> list[str]:
        return list(dict.fromkeys(self.registry.tracked_call_ids() + self.ledger.tracked_call_ids()))

    def tracked_calls(self) -> list[TrackedCall]:
        return self.registry.tracked_calls()

    def clear_tools(self, call_ids: list[str] | None = None) -> list[str]:
        """Stop tracking the given calls (all when None). Returns the cleared ids.

        Persisted execution records stay, so a cleared call never runs again.
        """
        ids = self.tracked_call_ids() if call_ids is None else list(dict.fromkeys(call_ids))
        self.registry.clear(ids)
        self.scheduler.cancel(call_ids=ids)
        forgotten = self.ledger.forget(ids)
        logger.info("cleared %d call(s), %d ledger entries", len(ids), forgotten)
        return ids
