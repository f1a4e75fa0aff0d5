"""Observable element tree standing in for the host page.

The host page is owned by whoever streams model output into it (see
host_page.HostPageWriter). streamcall only inserts rendered blocks next to
raw blocks, hides raw blocks and patches its own nodes.

Mutation records are queued and delivered to observers in one batch on the
next timer turn, the way a browser MutationObserver delivers them after the
current task. Without timers they are delivered synchronously.

// [LAW:one-way-deps] No parsing, ledger or rendering imports.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Literal

from streamcall.app.timers import Timers

logger = logging.getLogger(__name__)

MutationKind = Literal["inserted", "removed", "text", "attributes"]


@dataclass(frozen=True)
class MutationRecord:
    kind: MutationKind
    target: "Element"
    nodes: tuple["Element", ...] = field(default=())


MutationCallback = Callable[[list[MutationRecord]], None]


class Element:
    """One node: tag, classes, attributes, own text and children."""

    def __init__(
        self,
        tag: str = "div",
        *,
        classes: tuple[str, ...] | list[str] = (),
        attrs: dict[str, str] | None = None,
        text: str = "",
        children: tuple["Element", ...] | list["Element"] = (),
    ) -> None:
        self.tag = tag
        self.classes: set[str] = set(classes)
        self.attrs: dict[str, str] = dict(attrs or {})
        self._text = text
        self.children: list[Element] = []
        self.parent: Element | None = None
        self._hidden = False
        self._disabled = False
        self.on_click: Callable[["Element"], object] | None = None
        for child in children:
            self.append(child)

    def __repr__(self) -> str:
        cls = "." + ".".join(sorted(self.classes)) if self.classes else ""
        return f"<{self.tag}{cls} {self.attrs!r}>"

    # ─── Identity / placement ─────────────────────────────────────────

    @property
    def document(self) -> "Document | None":
        node: Element | None = self
        while node is not None:
            if isinstance(node, Document):
                return node
            node = node.parent
        return None

    @property
    def is_attached(self) -> bool:
        return self.document is not None

    def _notify(self, record: MutationRecord) -> None:
        doc = self.document
        if doc is not None:
            doc._enqueue(record)

    # ─── Text ─────────────────────────────────────────────────────────

    @property
    def text(self) -> str:
        return self._text

    @text.setter
    def text(self, value: str) -> None:
        if value == self._text:
            return
        self._text = value
        self._notify(MutationRecord("text", self))

    def text_content(self) -> str:
        """Own text followed by descendants' text, like DOM textContent."""
        return self._text + "".join(child.text_content() for child in self.children)

    # ─── Classes / attributes / flags ─────────────────────────────────

    def has_class(self, name: str) -> bool:
        return name in self.classes

    def add_class(self, name: str) -> None:
        if name not in self.classes:
            self.classes.add(name)
            self._notify(MutationRecord("attributes", self))

    def remove_class(self, name: str) -> None:
        if name in self.classes:
            self.classes.discard(name)
            self._notify(MutationRecord("attributes", self))

    def set_class(self, add: bool, name: str) -> None:
        if add:
            self.add_class(name)
        else:
            self.remove_class(name)

    def get_attr(self, name: str, default: str | None = None) -> str | None:
        return self.attrs.get(name, default)

    def has_attr(self, name: str) -> bool:
        return name in self.attrs

    def set_attr(self, name: str, value: str) -> None:
        if self.attrs.get(name) != value:
            self.attrs[name] = value
            self._notify(MutationRecord("attributes", self))

    def remove_attr(self, name: str) -> None:
        if name in self.attrs:
            del self.attrs[name]
            self._notify(MutationRecord("attributes", self))

    @property
    def hidden(self) -> bool:
        return self._hidden

    @hidden.setter
    def hidden(self, value: bool) -> None:
        if bool(value) != self._hidden:
            self._hidden = bool(value)
            self._notify(MutationRecord("attributes", self))

    @property
    def disabled(self) -> bool:
        return self._disabled

    @disabled.setter
    def disabled(self, value: bool) -> None:
        if bool(value) != self._disabled:
            self._disabled = bool(value)
            self._notify(MutationRecord("attributes", self))

    # ─── Tree mutation ────────────────────────────────────────────────

    def append(self, child: "Element") -> "Element":
        if child.parent is not None:
            child.remove()
        child.parent = self
        self.children.append(child)
        self._notify(MutationRecord("inserted", self, (child,)))
        return child

    def insert_before(self, child: "Element", reference: "Element | None") -> "Element":
        """Insert ``child`` right before ``reference`` (append when None)."""
        if reference is None:
            return self.append(child)
        if reference.parent is not self:
            raise ValueError(f"{reference!r} is not a child of {self!r}")
        if child.parent is not None:
            child.remove()
        child.parent = self
        self.children.insert(self.children.index(reference), child)
        self._notify(MutationRecord("inserted", self, (child,)))
        return child

    def remove(self) -> None:
        parent = self.parent
        if parent is None:
            return
        doc = parent.document
        parent.children.remove(self)
        self.parent = None
        if doc is not None:
            doc._enqueue(MutationRecord("removed", parent, (self,)))

    # ─── Queries ──────────────────────────────────────────────────────

    def iter_descendants(self) -> Iterator["Element"]:
        for child in list(self.children):
            yield child
            yield from child.iter_descendants()

    def matches(
        self, *, tag: str | None = None, cls: str | None = None, attrs: dict[str, str | None] | None = None
    ) -> bool:
        """attrs values of None mean "attribute present"."""
        if tag is not None and self.tag != tag:
            return False
        if cls is not None and cls not in self.classes:
            return False
        for name, value in (attrs or {}).items():
            if name not in self.attrs:
                return False
            if value is not None and self.attrs[name] != value:
                return False
        return True

    def query(
        self, *, tag: str | None = None, cls: str | None = None, attrs: dict[str, str | None] | None = None
    ) -> list["Element"]:
        return [el for el in self.iter_descendants() if el.matches(tag=tag, cls=cls, attrs=attrs)]

    def query_one(
        self, *, tag: str | None = None, cls: str | None = None, attrs: dict[str, str | None] | None = None
    ) -> "Element | None":
        for el in self.iter_descendants():
            if el.matches(tag=tag, cls=cls, attrs=attrs):
                return el
        return None

    def closest(self, *, tag: str | None = None, cls: str | None = None) -> "Element | None":
        node: Element | None = self
        while node is not None:
            if node.matches(tag=tag, cls=cls):
                return node
            node = node.parent
        return None

    def contains(self, other: "Element") -> bool:
        node: Element | None = other
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    # ─── Activation ───────────────────────────────────────────────────

    def click(self) -> bool:
        """Simulated activation. False when disabled or without a handler."""
        if self._disabled or self.on_click is None:
            return False
        self.on_click(self)
        return True


class Document(Element):
    """Root of the observable tree."""

    def __init__(self, timers: Timers | None = None) -> None:
        super().__init__("body")
        self._timers = timers
        self._observers: list[MutationCallback] = []
        self._pending: list[MutationRecord] = []
        self._flush_scheduled = False
        self._delivering = False

    def observe(self, callback: MutationCallback) -> Callable[[], None]:
        """Register an observer; returns its disposer."""
        self._observers.append(callback)

        def _dispose() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return _dispose

    def take_records(self) -> list[MutationRecord]:
        records, self._pending = self._pending, []
        return records

    def _enqueue(self, record: MutationRecord) -> None:
        if not self._observers:
            return
        self._pending.append(record)
        if self._timers is None:
            self.flush()
            return
        if not self._flush_scheduled:
            self._flush_scheduled = True
            self._timers.call_later(0, self.flush)

    def flush(self) -> None:
        """Deliver queued records to every observer.

        Records produced by observers while delivering are delivered in the
        same flush, after the current batch.
        """
        self._flush_scheduled = False
        if self._delivering:
            return
        self._delivering = True
        try:
            while self._pending:
                records = self.take_records()
                for callback in list(self._observers):
                    try:
                        callback(records)
                    except Exception:
                        logger.exception("mutation observer %r failed", callback)
        finally:
            self._delivering = False
