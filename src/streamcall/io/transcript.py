"""Transcript loading for replay.

A transcript is either plain text, or JSON lines where each line is an
object with a ``"text"`` field (one streamed chunk per line). Plain text is
split into fixed-size chunks to simulate streaming.

This module is a STABLE BOUNDARY. Import as: import streamcall.io.transcript
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CHUNK_SIZE = 24


class TranscriptError(Exception):
    """The transcript file could not be read."""


@dataclass(frozen=True)
class Transcript:
    path: str
    chunks: tuple[str, ...]

    @property
    def text(self) -> str:
        return "".join(self.chunks)


def split_chunks(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    size = max(1, int(chunk_size))
    return [text[i:i + size] for i in range(0, len(text), size)]


def _parse_jsonl(lines: list[str]) -> list[str] | None:
    """Chunks from JSON lines, or None when the text is not a JSONL transcript."""
    chunks: list[str] = []
    for line in lines:
        if not line.strip():
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError:
            return None
        if not isinstance(row, dict) or not isinstance(row.get("text"), str):
            return None
        chunks.append(row["text"])
    return chunks or None


def parse(text: str, *, chunk_size: int | None = None) -> list[str]:
    """JSONL chunks keep their own boundaries unless chunk_size re-splits them."""
    chunks = _parse_jsonl(text.splitlines())
    if chunks is None:
        return split_chunks(text, chunk_size or DEFAULT_CHUNK_SIZE)
    if chunk_size:
        return split_chunks("".join(chunks), chunk_size)
    return chunks


def load(path: str | Path, *, chunk_size: int | None = None) -> Transcript:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise TranscriptError(f"cannot read transcript {p}: {exc}") from exc
    return Transcript(path=str(p), chunks=tuple(parse(text, chunk_size=chunk_size)))
