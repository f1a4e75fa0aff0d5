"""Tests for the observable element tree."""

import pytest

from streamcall.app.document import Document, Element
from tests.harness import FakeTimers


def _collect(doc):
    batches = []
    doc.observe(batches.append)
    return batches


class TestElement:
    def test_text_content_includes_descendants(self):
        root = Element("div", text="a", children=[Element("span", text="b"), Element("span", text="c")])
        assert root.text_content() == "abc"

    def test_insert_before_and_remove(self):
        parent = Element("div")
        b = parent.append(Element("b"))
        a = parent.insert_before(Element("a"), b)
        assert [c.tag for c in parent.children] == ["a", "b"]
        a.remove()
        assert a.parent is None
        assert parent.children == [b]

    def test_insert_before_foreign_reference_raises(self):
        with pytest.raises(ValueError):
            Element("div").insert_before(Element("a"), Element("b"))

    def test_queries(self):
        doc = Document()
        block = doc.append(Element("div", classes=["function-block"], attrs={"data-block-id": "b1"}))
        button = block.append(Element("button", classes=["execute-button"], attrs={"data-call-id": "c1"}))
        assert doc.query_one(cls="execute-button", attrs={"data-call-id": "c1"}) is button
        assert doc.query_one(cls="execute-button", attrs={"data-call-id": "c2"}) is None
        assert doc.query(attrs={"data-block-id": None}) == [block]
        assert button.closest(cls="function-block") is block
        assert block.contains(button)
        assert button.is_attached

    def test_click_respects_disabled(self):
        clicks = []
        button = Element("button")
        assert button.click() is False
        button.on_click = clicks.append
        button.disabled = True
        assert button.click() is False
        button.disabled = False
        assert button.click() is True
        assert clicks == [button]


class TestMutationDelivery:
    def test_synchronous_without_timers(self):
        doc = Document()
        batches = _collect(doc)
        el = doc.append(Element("pre"))
        el.text = "x"
        assert [[r.kind for r in batch] for batch in batches] == [["inserted"], ["text"]]

    def test_batched_on_next_turn_with_timers(self):
        timers = FakeTimers()
        doc = Document(timers)
        batches = _collect(doc)
        el = doc.append(Element("pre"))
        el.text = "x"
        el.add_class("y")
        assert batches == []
        timers.advance(0)
        assert [[r.kind for r in batch] for batch in batches] == [["inserted", "text", "attributes"]]

    def test_unchanged_writes_emit_nothing(self):
        doc = Document()
        el = doc.append(Element("pre", text="x"))
        batches = _collect(doc)
        el.text = "x"
        el.add_class("a")
        el.add_class("a")
        el.set_attr("k", "v")
        el.set_attr("k", "v")
        assert len(batches) == 2

    def test_detached_nodes_emit_nothing(self):
        doc = Document()
        batches = _collect(doc)
        loose = Element("div")
        loose.text = "hi"
        loose.append(Element("span"))
        assert batches == []

    def test_observer_writes_are_delivered_in_same_flush(self):
        timers = FakeTimers()
        doc = Document(timers)
        seen = []

        def observer(records):
            seen.append([r.kind for r in records])
            if len(seen) == 1:
                records[0].nodes[0].set_attr("data-processed", "true")

        doc.observe(observer)
        doc.append(Element("pre"))
        timers.advance(0)
        assert seen == [["inserted"], ["attributes"]]

    def test_failing_observer_does_not_block_others(self):
        doc = Document()
        got = []

        def bad(_records):
            raise RuntimeError("boom")

        doc.observe(bad)
        doc.observe(got.append)
        doc.append(Element("pre"))
        assert len(got) == 1

    def test_dispose_stops_delivery(self):
        doc = Document()
        got = []
        dispose = doc.observe(got.append)
        dispose()
        doc.append(Element("pre"))
        assert got == []
