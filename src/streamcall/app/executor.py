"""Action trigger: the one place a call actually runs.

// [LAW:single-enforcer] activate() is the only path to a handler, and it
//   always goes through ExecutionLedger.claim() first.

A rendered block's action control is an Element with on_click bound here.
Manual clicks arrive with owner=None and manual=True; the scheduler passes
its RetryState as owner so its own reservation lets it through.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from streamcall.app.document import Document, Element
from streamcall.app.renderer import BLOCK_ID_ATTR, FUNCTION_BLOCK
from streamcall.core.ledger import ExecutionLedger
from streamcall.io.execution_store import ExecutionRecord, ExecutionStore, StorageError

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]
ExecutedListener = Callable[[ExecutionRecord], None]


class ActivationError(Exception):
    """The action control exists but cannot be activated."""


@dataclass(frozen=True)
class ExecutionRequest:
    block_id: str
    function_name: str
    call_id: str
    content_signature: str
    arguments: dict[str, Any] = field(default_factory=dict)


def echo_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Fallback for unregistered function names."""
    return {"echo": dict(arguments)}


class HandlerRegistry:
    """Function name → handler. Unknown names resolve to the echo handler."""

    def __init__(self, handlers: dict[str, Handler] | None = None, *, fallback: Handler = echo_handler) -> None:
        self._handlers: dict[str, Handler] = dict(handlers or {})
        self._fallback = fallback

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    def resolve(self, name: str) -> Handler:
        return self._handlers.get(name, self._fallback)

    def names(self) -> list[str]:
        return sorted(self._handlers)


class Executor:
    def __init__(
        self,
        document: Document,
        ledger: ExecutionLedger,
        store: ExecutionStore,
        handlers: HandlerRegistry | None = None,
    ) -> None:
        self._document = document
        self._ledger = ledger
        self._store = store
        self.handlers = handlers or HandlerRegistry()
        self._requests: dict[str, ExecutionRequest] = {}
        self._listeners: list[ExecutedListener] = []
        self.history: list[ExecutionRecord] = []
        # Strong refs to in-flight async handler tasks; the loop only keeps weak ones.
        self._tasks: set[asyncio.Task] = set()

    # ─── Binding ──────────────────────────────────────────────────────

    def bind(self, button: Element, request: ExecutionRequest) -> None:
        """Attach the request to its action control; clicks become manual activations."""
        self._requests[request.block_id] = request
        button.on_click = lambda el: self.activate(el, manual=True)

    def request_for(self, block_id: str) -> ExecutionRequest | None:
        return self._requests.get(block_id)

    def on_executed(self, listener: ExecutedListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _dispose

    # ─── Activation ───────────────────────────────────────────────────

    def activate(self, button: Element, owner: object | None = None, *, manual: bool = False) -> bool:
        """Run the bound call at most once. False when nothing ran.

        Raises ActivationError when the control has no bound request, which
        the scheduler treats as a retry-eligible failure.
        """
        if button.disabled:
            return False
        block_id = button.get_attr(BLOCK_ID_ATTR) or ""
        request = self._requests.get(block_id)
        if request is None:
            raise ActivationError(f"no request bound to action control of {block_id or '?'}")
        if not self._ledger.claim(
            request.call_id,
            request.content_signature,
            request.function_name,
            owner=owner,
            manual=manual,
        ):
            logger.debug("activation of %s:%s refused by ledger", request.function_name, request.call_id)
            return False

        button.disabled = True
        button.text = "Running"
        logger.info(
            "executing %s (call %s, %s)",
            request.function_name, request.call_id, "manual" if manual else "auto",
        )
        handler = self.handlers.resolve(request.function_name)
        try:
            outcome = handler(dict(request.arguments))
        except Exception as exc:
            logger.exception("handler for %s failed", request.function_name)
            self._finish(request, button, None, f"{type(exc).__name__}: {exc}")
            return True

        if inspect.isawaitable(outcome):
            self._await(request, button, outcome)
        else:
            self._finish(request, button, outcome, "")
        return True

    def _await(self, request: ExecutionRequest, button: Element, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self._finish(request, button, None, "RuntimeError: no running event loop for async handler")
            return

        async def _run() -> None:
            try:
                result = await awaitable
            except Exception as exc:
                logger.exception("async handler for %s failed", request.function_name)
                self._finish(request, button, None, f"{type(exc).__name__}: {exc}")
            else:
                self._finish(request, button, result, "")

        task = loop.create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ─── Completion ───────────────────────────────────────────────────

    def _finish(self, request: ExecutionRequest, button: Element, result: Any, error: str) -> None:
        record = ExecutionRecord(
            function_name=request.function_name,
            call_id=request.call_id,
            content_signature=request.content_signature,
            arguments=dict(request.arguments),
            result=result,
            error=error,
        )
        self.history.append(record)
        try:
            self._store.store_execution(record)
        except StorageError:
            # The in-process ledger still holds the key for this process.
            logger.exception("could not persist execution of %s:%s", request.function_name, request.call_id)

        button.text = "Failed" if error else "Done"
        self._show_result(request.block_id, result, error)
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception:
                logger.exception("execution listener failed")

    def _show_result(self, block_id: str, result: Any, error: str) -> None:
        root = self._document.query_one(cls=FUNCTION_BLOCK, attrs={BLOCK_ID_ATTR: block_id})
        if root is None:
            return
        text = error or json.dumps(result, indent=2, default=str, ensure_ascii=False)
        existing = root.query_one(cls="function-result")
        if existing is None:
            existing = root.append(Element("pre", classes=["function-result"]))
        existing.text = text
        existing.set_class(bool(error), "function-error")
