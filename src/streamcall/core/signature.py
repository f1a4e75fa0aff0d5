"""Content signatures for complete calls.

// [LAW:one-source-of-truth] The only place a call fingerprint is derived.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping


def _canonical(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def generate_content_signature(function_name: str | None, parameters: Mapping[str, Any]) -> str:
    """Deterministic fingerprint of (function name, parameters).

    Parameter insertion order does not matter; keys are sorted at every depth.
    """
    payload = json.dumps(
        {"name": function_name or "", "params": _canonical(parameters)},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
