"""Durable record of executed calls.

Manages a JSON file at XDG_DATA_HOME/streamcall/executions.json. The ledger
consults it as its second tier so a call executed before a reload is not run
again.

This module is a STABLE BOUNDARY. Import as: import streamcall.io.execution_store
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The execution store could not be read or written."""


@dataclass
class ExecutionRecord:
    function_name: str
    call_id: str
    content_signature: str
    arguments: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str = ""
    executed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict) -> "ExecutionRecord":
        return cls(
            function_name=str(raw.get("function_name", "") or ""),
            call_id=str(raw.get("call_id", "") or ""),
            content_signature=str(raw.get("content_signature", "") or ""),
            arguments=raw.get("arguments") if isinstance(raw.get("arguments"), dict) else {},
            result=raw.get("result"),
            error=str(raw.get("error", "") or ""),
            executed_at=str(raw.get("executed_at", "") or ""),
        )


def get_executions_path() -> Path:
    """Return default path of the executions file.

    STREAMCALL_EXECUTIONS_FILE wins; otherwise XDG_DATA_HOME (default
    ~/.local/share) / streamcall / executions.json.
    """
    override = os.environ.get("STREAMCALL_EXECUTIONS_FILE")
    if override:
        return Path(override)
    data_home = os.environ.get("XDG_DATA_HOME", os.path.expanduser("~/.local/share"))
    return Path(data_home) / "streamcall" / "executions.json"


class ExecutionStore:
    """Execution records keyed by (function name, call id, signature).

    path=None keeps records in memory only.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._records: list[ExecutionRecord] | None = None if self._path is not None else []

    @property
    def path(self) -> Path | None:
        return self._path

    # ─── Reads ────────────────────────────────────────────────────────

    def _load(self) -> list[ExecutionRecord]:
        if self._records is not None:
            return self._records
        assert self._path is not None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raw = []
        except (json.JSONDecodeError, OSError) as exc:
            raise StorageError(f"cannot read {self._path}: {exc}") from exc
        rows = raw.get("executions", []) if isinstance(raw, dict) else raw
        if not isinstance(rows, list):
            raise StorageError(f"unexpected executions payload in {self._path}")
        self._records = [ExecutionRecord.from_dict(row) for row in rows if isinstance(row, dict)]
        return self._records

    def records(self) -> list[ExecutionRecord]:
        return list(self._load())

    def get_previous_execution(
        self, function_name: str, call_id: str, content_signature: str
    ) -> ExecutionRecord | None:
        for record in reversed(self._load()):
            if (
                record.function_name == function_name
                and record.call_id == call_id
                and record.content_signature == content_signature
            ):
                return record
        return None

    def get_previous_execution_legacy(self, call_id: str, content_signature: str) -> ExecutionRecord | None:
        """Two-key lookup for records written before function names were stored."""
        for record in reversed(self._load()):
            if record.call_id == call_id and record.content_signature == content_signature:
                return record
        return None

    # ─── Writes ───────────────────────────────────────────────────────

    def store_execution(self, record: ExecutionRecord) -> None:
        records = self._load()
        records.append(record)
        self._flush(records)

    def remove_call_ids(self, call_ids: Iterable[str]) -> int:
        doomed = set(call_ids)
        records = self._load()
        kept = [r for r in records if r.call_id not in doomed]
        removed = len(records) - len(kept)
        if removed:
            self._records = kept
            self._flush(kept)
        return removed

    def clear(self) -> None:
        self._records = []
        self._flush([])

    def _flush(self, records: list[ExecutionRecord]) -> None:
        """Atomic write: temp file then rename."""
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        except OSError as exc:
            raise StorageError(f"cannot write {self._path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"executions": [r.to_dict() for r in records]}, f, indent=2, default=str)
                f.write("\n")
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StorageError(f"cannot write {self._path}: {exc}") from exc
        logger.debug("wrote %d execution records to %s", len(records), self._path)
