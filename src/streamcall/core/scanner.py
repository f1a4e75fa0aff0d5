"""Function-call directive scanning and parameter extraction.

// [LAW:one-source-of-truth] All knowledge of the <function_calls> markup lives here.
// [LAW:dataflow-not-control-flow] Malformed or partial markup is data
//   (IncompleteCall), never an exception.

Pure module: no state outside CallParser instances, no I/O.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any


OPEN_CALLS = "<function_calls>"
CLOSE_CALLS = "</function_calls>"
OPEN_INVOKE = "<invoke"
CLOSE_INVOKE = "</invoke>"
CLOSE_PARAM = "</parameter>"
CDATA_OPEN = "<![CDATA["
CDATA_CLOSE = "]]>"

DEFAULT_FUNCTION_NAME = "function"

_INVOKE_TAG_RE = re.compile(r"<invoke\b([^>]*)>", re.IGNORECASE)
_PARAM_START_RE = re.compile(r"<parameter\s+name=\"([^\"]+)\"[^>]*>", re.IGNORECASE)
_ATTR_RE = re.compile(r"([A-Za-z_][\w-]*)\s*=\s*\"([^\"]*)\"")
_LANGUAGE_LINE_RE = re.compile(r"^[A-Za-z][\w+#.-]{0,19}$")


# ─── Types ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ScanResult:
    has_function_calls: bool
    is_complete: bool
    language_tag: str | None = None


@dataclass(frozen=True)
class ParamValue:
    """One parameter as seen so far. streaming=True means no closing tag yet."""

    name: str
    value: str
    streaming: bool = False
    cdata: bool = False


@dataclass(frozen=True)
class IncompleteCall:
    function_name: str | None
    call_id: str
    parameters: tuple[ParamValue, ...] = ()
    language_tag: str | None = None

    is_complete = False

    @property
    def display_name(self) -> str:
        return self.function_name or DEFAULT_FUNCTION_NAME


@dataclass(frozen=True)
class CompleteCall:
    function_name: str | None
    call_id: str
    parameters: tuple[ParamValue, ...] = ()
    language_tag: str | None = None
    arguments: dict[str, Any] = field(default_factory=dict)

    is_complete = True

    @property
    def display_name(self) -> str:
        return self.function_name or DEFAULT_FUNCTION_NAME


ParsedCall = IncompleteCall | CompleteCall


# ─── Tag scanner ─────────────────────────────────────────────────────────────


def extract_language_tag(text: str) -> tuple[str | None, str]:
    """Split off a bare language label line (``xml``) that hosts prepend to code blocks."""
    stripped = text.lstrip()
    first, sep, rest = stripped.partition("\n")
    candidate = first.strip()
    if sep and candidate and "<" not in candidate and _LANGUAGE_LINE_RE.match(candidate):
        return candidate.lower(), rest
    return None, text


def contains_function_calls(text: str) -> bool:
    """Cheap candidate check used before any parsing."""
    return OPEN_CALLS in text or OPEN_INVOKE in text


def _is_complete(text: str) -> bool:
    if OPEN_INVOKE in text:
        invoke_at = text.find(OPEN_INVOKE)
        if text.find(CLOSE_INVOKE, invoke_at) == -1:
            return False
    elif OPEN_CALLS not in text:
        return False
    if OPEN_CALLS in text:
        calls_at = text.find(OPEN_CALLS)
        if text.find(CLOSE_CALLS, calls_at) == -1:
            return False
    return True


def scan(text: str) -> ScanResult:
    """Classify raw block text. Missing closing tags mean incomplete, not an error."""
    if not text or not contains_function_calls(text):
        return ScanResult(False, False, None)
    tag, content = extract_language_tag(text)
    return ScanResult(True, _is_complete(content), tag)


# ─── Parameter extraction ────────────────────────────────────────────────────


def _strip_partial_close(value: str, closing: str) -> str:
    """Drop a trailing prefix of ``closing`` (``</para``) from a streaming value."""
    for size in range(min(len(closing) - 1, len(value)), 0, -1):
        if value.endswith(closing[:size]):
            return value[:-size]
    return value


def _decode_value(raw: str, *, streaming: bool) -> tuple[str, bool]:
    """Return (display value, was_cdata)."""
    lead = raw.lstrip()
    if lead.startswith(CDATA_OPEN):
        inner = lead[len(CDATA_OPEN):]
        end = inner.find(CDATA_CLOSE)
        if end != -1:
            return inner[:end], True
        if streaming:
            inner = _strip_partial_close(inner, CDATA_CLOSE)
        return inner, True
    if streaming:
        raw = _strip_partial_close(raw, CLOSE_PARAM)
    return raw.strip(), False


def _read_param(text: str, match: re.Match) -> tuple[ParamValue, int | None]:
    """Decode the parameter opened by ``match``; second item is the end offset or None."""
    start = match.end()
    end = text.find(CLOSE_PARAM, start)
    if end == -1:
        value, cdata = _decode_value(text[start:], streaming=True)
        return ParamValue(match.group(1), value, streaming=True, cdata=cdata), None
    value, cdata = _decode_value(text[start:end], streaming=False)
    return ParamValue(match.group(1), value, streaming=False, cdata=cdata), end + len(CLOSE_PARAM)


def extract_parameters(text: str) -> list[ParamValue]:
    """Every parameter found so far, in document order.

    Only a parameter without its closing tag is marked streaming.
    """
    params: list[ParamValue] = []
    pos = 0
    while True:
        match = _PARAM_START_RE.search(text, pos)
        if match is None:
            return params
        param, end = _read_param(text, match)
        params.append(param)
        if end is None:
            return params
        pos = end


def coerce_value(raw: str) -> Any:
    """Type a complete non-CDATA value for execution; falls back to the string."""
    candidate = raw.strip()
    if not candidate:
        return raw
    if candidate[0] in "{[-0123456789" or candidate in ("true", "false", "null"):
        try:
            return json.loads(candidate)
        except ValueError:
            return raw
    return raw


def extract_function_parameters(text: str) -> dict[str, Any]:
    """Structured extraction for execution. Streaming parameters are skipped."""
    args: dict[str, Any] = {}
    for param in extract_parameters(text):
        if param.streaming:
            continue
        args[param.name] = param.value if param.cdata else coerce_value(param.value)
    return args


def _invoke_header(text: str) -> tuple[str | None, str | None]:
    match = _INVOKE_TAG_RE.search(text)
    if match is None:
        return None, None
    attrs = dict(_ATTR_RE.findall(match.group(1)))
    name = attrs.get("name", "").strip() or None
    call_id = attrs.get("call_id", "").strip() or None
    return name, call_id


def parse_call(text: str, block_id: str) -> ParsedCall:
    """One-shot parse. Prefer CallParser for a growing buffer."""
    return CallParser(block_id).feed(text)


# ─── Incremental parser ──────────────────────────────────────────────────────


class CallParser:
    """Incremental parser for one RawBlock's growing text.

    Completed parameters are kept together with the offset just past their
    closing tag; when the next text extends the previous one, parsing resumes
    from that offset. Any other change resets the parser.
    """

    def __init__(self, block_id: str) -> None:
        self.block_id = block_id
        self._text = ""
        self._stable: list[ParamValue] = []
        self._cursor = 0
        self._last: ParsedCall | None = None

    def reset(self) -> None:
        self._text = ""
        self._stable = []
        self._cursor = 0
        self._last = None

    @property
    def text(self) -> str:
        return self._text

    def feed(self, text: str) -> ParsedCall:
        if self._last is not None and text == self._text:
            return self._last
        if not text.startswith(self._text):
            self.reset()

        # Offsets are in raw-text coordinates; the language label only affects the header.
        tag, content = extract_language_tag(text)
        self._text = text
        streaming_tail: list[ParamValue] = []
        pos = self._cursor
        while True:
            match = _PARAM_START_RE.search(text, pos)
            if match is None:
                break
            param, end = _read_param(text, match)
            if end is None:
                streaming_tail.append(param)
                break
            self._stable.append(param)
            self._cursor = pos = end

        name, call_id = _invoke_header(content)
        params = tuple(self._stable) + tuple(streaming_tail)
        if _is_complete(content) and contains_function_calls(content):
            parsed: ParsedCall = CompleteCall(
                function_name=name,
                call_id=call_id or self.block_id,
                parameters=params,
                language_tag=tag,
                arguments={
                    p.name: p.value if p.cdata else coerce_value(p.value)
                    for p in params
                    if not p.streaming
                },
            )
        else:
            parsed = IncompleteCall(
                function_name=name,
                call_id=call_id or self.block_id,
                parameters=params,
                language_tag=tag,
            )
        self._last = parsed
        return parsed
