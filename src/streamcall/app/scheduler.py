"""Auto-execution scheduler with bounded retry.

// [LAW:single-enforcer] Reservation (mark_scheduled) happens synchronously in
//   schedule(), before any timer is armed.
// [LAW:dataflow-not-control-flow] auto_execute is read from settings at every
//   attempt, never cached in RetryState.

Lifecycle of one RetryState: created by schedule(), first attempt immediately,
then retries with growing delay until the control is triggered, the ceiling is
reached, or something else makes the attempt pointless (executed elsewhere,
auto-execute turned off, raw block gone, calls cleared). Every stop except a
successful trigger releases the reservation so the control stays manual.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from snarfx.hot_reload import HotReloadStore

from streamcall.app.document import Document, Element
from streamcall.app.executor import ExecutionRequest, Executor
from streamcall.app.renderer import BLOCK_ID_ATTR, EXECUTE_BUTTON, BlockRegistry
from streamcall.app.timers import TimerHandle, Timers
from streamcall.core.ledger import ExecutionLedger, LedgerState

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 8
INITIAL_RETRY_DELAY_S = 0.15
BACKOFF_FACTOR = 1.5
MAX_RETRY_DELAY_S = 1.0


class ScheduleOutcome(Enum):
    TRIGGERED = "triggered"
    RETRYING = "retrying"
    ALREADY_EXECUTED = "already_executed"
    DISABLED = "disabled"
    ALREADY_SCHEDULED = "already_scheduled"
    EXHAUSTED = "exhausted"
    CLEARED = "cleared"
    STOPPED = "stopped"


@dataclass(eq=False)
class RetryState:
    request: ExecutionRequest
    initiated_at: float = 0.0
    attempts: int = 0
    timer: TimerHandle | None = field(default=None, repr=False)


def retry_delay(attempt: int) -> float:
    """Delay before the retry that follows ``attempt`` (1-based)."""
    return min(INITIAL_RETRY_DELAY_S * BACKOFF_FACTOR ** (attempt - 1), MAX_RETRY_DELAY_S)


class AutoExecutionScheduler:
    def __init__(
        self,
        document: Document,
        registry: BlockRegistry,
        ledger: ExecutionLedger,
        executor: Executor,
        settings: HotReloadStore,
        timers: Timers,
        *,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self._document = document
        self._registry = registry
        self._ledger = ledger
        self._executor = executor
        self._settings = settings
        self._timers = timers
        self._max_attempts = max_attempts
        self._states: dict[str, RetryState] = {}
        self._exhausted: set[str] = set()

    # ─── Queries ──────────────────────────────────────────────────────

    def retry_state(self, block_id: str) -> RetryState | None:
        return self._states.get(block_id)

    def is_active(self, block_id: str) -> bool:
        return block_id in self._states

    def is_exhausted(self, block_id: str) -> bool:
        return block_id in self._exhausted

    # ─── Scheduling ───────────────────────────────────────────────────

    def schedule(self, request: ExecutionRequest) -> ScheduleOutcome:
        if self._registry.is_cleared(request.call_id):
            return ScheduleOutcome.CLEARED
        if self._ledger.is_executed(request.call_id, request.content_signature, request.function_name):
            return ScheduleOutcome.ALREADY_EXECUTED
        if not self._settings.get("auto_execute"):
            return ScheduleOutcome.DISABLED
        if request.block_id in self._states:
            return ScheduleOutcome.ALREADY_SCHEDULED
        if request.block_id in self._exhausted:
            return ScheduleOutcome.EXHAUSTED

        state = RetryState(request, initiated_at=self._timers.now())
        self._states[request.block_id] = state
        self._ledger.mark_scheduled(
            request.call_id, request.content_signature, request.function_name, owner=state
        )
        logger.debug("scheduled %s:%s (block %s)", request.function_name, request.call_id, request.block_id)
        return self._attempt(state)

    def retarget(self, request: ExecutionRequest) -> ScheduleOutcome:
        """Drop any loop or give-up mark held for the block, then schedule ``request``."""
        self.cancel(block_id=request.block_id)
        self._exhausted.discard(request.block_id)
        return self.schedule(request)

    def cancel(self, *, call_ids: list[str] | None = None, block_id: str | None = None) -> int:
        """Stop retry loops by call id or block id (all when neither is given)."""
        doomed = [
            state
            for bid, state in self._states.items()
            if (block_id is None or bid == block_id)
            and (call_ids is None or state.request.call_id in call_ids)
        ]
        for state in doomed:
            self._stop(state, "cancelled")
        return len(doomed)

    # ─── Attempts ─────────────────────────────────────────────────────

    def _attempt(self, state: RetryState) -> ScheduleOutcome:
        state.timer = None
        if self._states.get(state.request.block_id) is not state:
            return ScheduleOutcome.STOPPED
        state.attempts += 1
        request = state.request

        reason = self._stop_reason(state)
        if reason is not None:
            self._stop(state, reason)
            return ScheduleOutcome.STOPPED

        button = self._locate(request)
        if button is not None and not button.disabled:
            try:
                if self._executor.activate(button, owner=state):
                    self._states.pop(request.block_id, None)
                    logger.debug(
                        "auto-executed %s:%s on attempt %d", request.function_name, request.call_id, state.attempts
                    )
                    return ScheduleOutcome.TRIGGERED
            except Exception:
                logger.exception(
                    "attempt %d to trigger %s:%s failed", state.attempts, request.function_name, request.call_id
                )

        if state.attempts >= self._max_attempts:
            self._exhausted.add(request.block_id)
            self._stop(state, f"gave up after {state.attempts} attempts")
            return ScheduleOutcome.EXHAUSTED

        state.timer = self._timers.call_later(retry_delay(state.attempts), lambda: self._attempt(state))
        return ScheduleOutcome.RETRYING

    def _stop_reason(self, state: RetryState) -> str | None:
        request = state.request
        if self._registry.is_cleared(request.call_id):
            return "cleared"
        block = self._registry.get(request.block_id)
        if block is None or block.raw is None or not block.raw.is_attached:
            return "raw block removed"
        if not self._settings.get("auto_execute"):
            return "auto-execute disabled"
        ledger_state = self._ledger.state(request.call_id, request.content_signature, request.function_name)
        if ledger_state is LedgerState.EXECUTED:
            return "executed elsewhere"
        if ledger_state is LedgerState.INDETERMINATE:
            return "execution storage indeterminate"
        if ledger_state is LedgerState.SCHEDULED and self._ledger.owner(
            request.call_id, request.content_signature, request.function_name
        ) is not state:
            return "scheduled by another owner"
        return None

    def _stop(self, state: RetryState, reason: str) -> None:
        request = state.request
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None
        if self._states.get(request.block_id) is state:
            del self._states[request.block_id]
        self._ledger.release(request.call_id, request.content_signature, request.function_name, owner=state)
        log = logger.info if reason.startswith("gave up") else logger.debug
        log("stopped auto-execution of %s:%s: %s", request.function_name, request.call_id, reason)

    def _locate(self, request: ExecutionRequest) -> Element | None:
        block = self._registry.get(request.block_id)
        if block is not None and block.execute_button is not None and block.execute_button.is_attached:
            return block.execute_button
        found = self._document.query_one(cls=EXECUTE_BUTTON, attrs={BLOCK_ID_ATTR: request.block_id})
        if found is not None:
            return found
        return self._document.query_one(
            cls=EXECUTE_BUTTON,
            attrs={"data-function-name": request.function_name, "data-call-id": request.call_id},
        )
