"""Stand-in host page: streams model text into the document.

Prose grows inside a ``div.prose`` element; fenced code opens a ``pre`` whose
first line is the fence's language label (``xml``), the way chat pages render
code blocks. Text is patched in place as chunks arrive, so the coordinator
sees text mutations on a growing raw block.
"""

from __future__ import annotations

import logging

from streamcall.app.document import Document, Element

logger = logging.getLogger(__name__)

FENCE = "```"


class HostPageWriter:
    def __init__(self, document: Document) -> None:
        self._document = document
        self._message: Element | None = None
        self._prose: Element | None = None
        self._pre: Element | None = None
        self._committed = ""
        self._line = ""

    @property
    def message(self) -> Element | None:
        return self._message

    def begin_message(self, role: str = "assistant") -> Element:
        if self._message is not None:
            self.end_message()
        self._message = self._document.append(Element("div", classes=["message", role]))
        self._prose = None
        self._pre = None
        self._committed = ""
        self._line = ""
        return self._message

    def write(self, chunk: str) -> None:
        if self._message is None:
            self.begin_message()
        self._line += chunk
        while "\n" in self._line:
            line, self._line = self._line.split("\n", 1)
            self._commit_line(line)
        self._show_partial()

    def end_message(self) -> None:
        if self._message is None:
            return
        if self._line:
            line, self._line = self._line, ""
            self._commit_line(line)
        self._show_partial()
        self._message = None
        self._prose = None
        self._pre = None

    def write_message(self, text: str, role: str = "assistant") -> Element:
        message = self.begin_message(role)
        self.write(text)
        self.end_message()
        return message

    # ─── Internals ────────────────────────────────────────────────────

    def _target(self) -> Element:
        if self._pre is not None:
            return self._pre
        if self._prose is None:
            assert self._message is not None
            self._prose = self._message.append(Element("div", classes=["prose"]))
            self._committed = ""
        return self._prose

    def _commit_line(self, line: str) -> None:
        stripped = line.strip()
        if stripped.startswith(FENCE):
            if self._pre is None:
                label = stripped[len(FENCE):].strip()
                assert self._message is not None
                self._pre = self._message.append(Element("pre"))
                self._prose = None
                self._committed = f"{label}\n" if label else ""
                self._pre.text = self._committed
            else:
                self._pre.text = self._committed.rstrip("\n")
                self._pre = None
                self._prose = None
                self._committed = ""
            return
        target = self._target()
        self._committed += line + "\n"
        target.text = self._committed

    def _show_partial(self) -> None:
        if self._message is None:
            return
        partial = self._line
        # A line starting with a backtick may become a fence; hold it back.
        if not partial or partial.lstrip().startswith("`"):
            return
        self._target().text = self._committed + partial
