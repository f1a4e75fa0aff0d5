"""Execution ledger: at-most-once bookkeeping for function calls.

// [LAW:single-enforcer] Every execution path decides "may I run this?" here,
//   through claim(), inside one synchronous turn.
// [LAW:one-source-of-truth] In-process keys + durable storage; nothing else
//   records whether a call ran.

Two tiers:
  1. in-process entries keyed ``name:call_id:signature`` (legacy
     ``call_id:signature`` when the name is unknown), lost on reload;
  2. external storage queried by the same triple, plus a legacy two-key
     lookup for records that predate function names.

Single-threaded by contract: callers check and mark without yielding in
between, which is what makes check-then-mark race-free.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)


class LedgerState(Enum):
    UNKNOWN = "unknown"
    SCHEDULED = "scheduled"
    EXECUTED = "executed"
    INDETERMINATE = "indeterminate"  # storage lookup failed


class ExecutionLookup(Protocol):
    def get_previous_execution(self, function_name: str, call_id: str, content_signature: str): ...

    def get_previous_execution_legacy(self, call_id: str, content_signature: str): ...


@dataclass
class _Entry:
    state: LedgerState
    call_id: str
    signature: str
    name: str = ""
    owner: object | None = None


def make_key(call_id: str, content_signature: str, function_name: str | None = None) -> str:
    if isinstance(function_name, str) and function_name.strip():
        return f"{function_name}:{call_id}:{content_signature}"
    return f"{call_id}:{content_signature}"


def _name(function_name: str | None) -> str:
    return function_name.strip() if isinstance(function_name, str) else ""


class ExecutionLedger:
    """Process-scoped ledger. Created at startup; cleared only by forget()."""

    def __init__(self, storage: ExecutionLookup | None = None, *, legacy_lookup: bool = True) -> None:
        self._storage = storage
        self._entries: dict[str, _Entry] = {}
        self.legacy_lookup = legacy_lookup

    # ─── In-process tier ──────────────────────────────────────────────

    def _memory_entry(self, call_id: str, signature: str, name: str | None) -> _Entry | None:
        if isinstance(name, str) and name.strip():
            entry = self._entries.get(make_key(call_id, signature, name))
            if entry is not None:
                return entry
        else:
            # Name unknown: any name-qualified entry for the same call id + signature.
            for entry in self._entries.values():
                if entry.name and entry.call_id == call_id and entry.signature == signature:
                    return entry
        if not self.legacy_lookup:
            return None
        return self._entries.get(make_key(call_id, signature)) or self._entries.get(f":{call_id}:{signature}")

    # ─── Storage tier ─────────────────────────────────────────────────

    def _storage_state(self, call_id: str, signature: str, name: str | None) -> LedgerState:
        if self._storage is None:
            return LedgerState.UNKNOWN
        try:
            if isinstance(name, str) and name.strip():
                if self._storage.get_previous_execution(name, call_id, signature) is not None:
                    return LedgerState.EXECUTED
            if self.legacy_lookup:
                if self._storage.get_previous_execution_legacy(call_id, signature) is not None:
                    return LedgerState.EXECUTED
        except Exception as exc:
            logger.warning(
                "execution storage lookup failed for %s:%s:%s (%s); result is indeterminate",
                name or "", call_id, signature, exc,
            )
            return LedgerState.INDETERMINATE
        return LedgerState.UNKNOWN

    # ─── Queries ──────────────────────────────────────────────────────

    def state(self, call_id: str, content_signature: str, function_name: str | None = None) -> LedgerState:
        entry = self._memory_entry(call_id, content_signature, function_name)
        if entry is not None:
            return entry.state
        return self._storage_state(call_id, content_signature, function_name)

    def is_executed(self, call_id: str, content_signature: str, function_name: str | None = None) -> bool:
        """True when executed or scheduled; an indeterminate lookup counts as executed."""
        return self.state(call_id, content_signature, function_name) is not LedgerState.UNKNOWN

    def owner(self, call_id: str, content_signature: str, function_name: str | None = None) -> object | None:
        entry = self._memory_entry(call_id, content_signature, function_name)
        return entry.owner if entry is not None else None

    def tracked_call_ids(self) -> list[str]:
        seen: dict[str, None] = {}
        for entry in self._entries.values():
            seen.setdefault(entry.call_id, None)
        return list(seen)

    # ─── Mutations ────────────────────────────────────────────────────

    def mark_executed(self, call_id: str, content_signature: str, function_name: str | None = None) -> None:
        """Idempotent: marking twice is a no-op."""
        key = make_key(call_id, content_signature, function_name)
        entry = self._entries.get(key)
        if entry is not None and entry.state is LedgerState.EXECUTED:
            return
        self._entries[key] = _Entry(LedgerState.EXECUTED, call_id, content_signature, _name(function_name))
        logger.debug("ledger executed: %s", key)

    def mark_scheduled(
        self,
        call_id: str,
        content_signature: str,
        function_name: str | None = None,
        *,
        owner: object | None = None,
    ) -> None:
        key = make_key(call_id, content_signature, function_name)
        entry = self._entries.get(key)
        if entry is not None and entry.state is LedgerState.EXECUTED:
            return
        self._entries[key] = _Entry(
            LedgerState.SCHEDULED, call_id, content_signature, _name(function_name), owner
        )
        logger.debug("ledger scheduled: %s", key)

    def release(
        self,
        call_id: str,
        content_signature: str,
        function_name: str | None = None,
        *,
        owner: object | None = None,
    ) -> bool:
        """Drop a scheduled reservation held by ``owner``. Executed entries are final."""
        key = make_key(call_id, content_signature, function_name)
        entry = self._entries.get(key)
        if entry is None or entry.state is not LedgerState.SCHEDULED or entry.owner is not owner:
            return False
        del self._entries[key]
        logger.debug("ledger released: %s", key)
        return True

    def claim(
        self,
        call_id: str,
        content_signature: str,
        function_name: str | None = None,
        *,
        owner: object | None = None,
        manual: bool = False,
    ) -> bool:
        """Check-then-mark in one turn. True only for the caller allowed to execute.

        A scheduled entry belongs to its owner. An indeterminate storage
        lookup blocks automatic callers but not an explicit manual activation.
        """
        entry = self._memory_entry(call_id, content_signature, function_name)
        if entry is not None:
            if entry.state is LedgerState.SCHEDULED and owner is not None and entry.owner is owner:
                self.mark_executed(call_id, content_signature, function_name)
                return True
            return False
        stored = self._storage_state(call_id, content_signature, function_name)
        if stored is LedgerState.EXECUTED:
            return False
        if stored is LedgerState.INDETERMINATE and not manual:
            return False
        self.mark_executed(call_id, content_signature, function_name)
        return True

    def forget(self, call_ids: Iterable[str]) -> int:
        """Remove in-process entries for the given call ids (clear-tools)."""
        doomed = set(call_ids)
        keys = [k for k, e in self._entries.items() if e.call_id in doomed]
        for key in keys:
            del self._entries[key]
        return len(keys)
