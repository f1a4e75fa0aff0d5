"""Tests for MutationCoordinator: candidate filtering, stagger, re-arm and fallback scan."""

import pytest

from streamcall.app.coordinator import MutationCoordinator
from streamcall.app.document import Document, Element
from streamcall.app.renderer import BlockRegistry
from tests.harness import FakeTimers, add_raw_block, make_call_text, make_settings


class Rig:
    def __init__(self, auto_execute=True):
        self.timers = FakeTimers()
        self.doc = Document(self.timers)
        self.settings = make_settings(auto_execute=auto_execute)
        self.processed: list[tuple[float, Element]] = []
        self.reoffers = 0
        self.coordinator = MutationCoordinator(
            self.doc,
            BlockRegistry(),
            self.settings,
            self.timers,
            process=self._process,
            reoffer=self._reoffer,
        )

    def _process(self, raw):
        self.processed.append((self.timers.now(), raw))

    def _reoffer(self):
        self.reoffers += 1
        return 0


def test_plain_code_blocks_are_not_candidates():
    rig = Rig()
    rig.coordinator.start()
    raw = add_raw_block(rig.doc, "print('hi')")
    rig.timers.advance(0.5)
    assert rig.processed == []
    assert not raw.has_attr("data-processed")


def test_candidates_are_marked_and_staggered():
    rig = Rig()
    rig.coordinator.start()
    raws = [add_raw_block(rig.doc, make_call_text(call_id=f"c{i}")) for i in range(3)]
    rig.timers.advance(0)
    assert rig.coordinator.suppressed is True
    rig.timers.advance(0.5)
    assert [raw for _, raw in rig.processed] == raws
    assert [t for t, _ in rig.processed] == pytest.approx([0.0, 0.1, 0.2])
    assert all(raw.get_attr("data-processed") == "true" for raw in raws)
    assert rig.coordinator.suppressed is False


def test_rearms_after_batch():
    rig = Rig()
    rig.coordinator.start()
    add_raw_block(rig.doc, make_call_text(call_id="c1"))
    rig.timers.advance(0)
    # Empty queue after the item at 0.0 -> drain at 0.1 -> re-arm at 0.2.
    rig.timers.advance(0.15)
    assert rig.coordinator.suppressed is True
    rig.timers.advance(0.1)
    assert rig.coordinator.suppressed is False


def test_insertions_during_batch_are_queued_not_lost():
    rig = Rig()
    rig.coordinator.start()
    add_raw_block(rig.doc, make_call_text(call_id="c1"))
    rig.timers.advance(0)
    late = add_raw_block(rig.doc, make_call_text(call_id="c2"))
    rig.timers.advance(0.5)
    assert [raw for _, raw in rig.processed][-1] is late
    assert len(rig.processed) == 2


def test_nodes_inside_rendered_blocks_are_ignored():
    rig = Rig()
    rig.coordinator.start()
    block = rig.doc.append(Element("div", classes=["function-block"]))
    block.append(Element("pre", classes=["raw-content"], text=make_call_text()))
    rig.timers.advance(0.5)
    assert rig.processed == []


def test_text_growth_turns_empty_block_into_candidate():
    rig = Rig()
    rig.coordinator.start()
    raw = add_raw_block(rig.doc, "")
    rig.timers.advance(0.3)
    assert rig.processed == []
    raw.text = "<function_calls><invoke name=\"s\">"
    rig.timers.advance(0.3)
    assert [r for _, r in rig.processed] == [raw]


def test_known_raw_block_text_changes_are_requeued():
    rig = Rig()
    rig.coordinator.start()
    raw = add_raw_block(rig.doc, make_call_text())
    raw.set_attr("data-block-id", "block-x")
    rig.timers.advance(0.3)
    raw.text = raw.text + " "
    rig.timers.advance(0.3)
    assert [r for _, r in rig.processed] == [raw, raw]


def test_fallback_scan_picks_up_missed_blocks():
    rig = Rig()
    raw = add_raw_block(rig.doc, make_call_text())
    rig.coordinator.start()
    rig.timers.advance(0.9)
    assert rig.processed == []
    rig.timers.advance(0.2)
    assert [r for _, r in rig.processed] == [raw]
    assert rig.reoffers == 1
    rig.timers.advance(3.0)
    assert rig.reoffers == 2


def test_fallback_scan_skips_reoffer_when_auto_execute_off():
    rig = Rig(auto_execute=False)
    rig.coordinator.start()
    rig.timers.advance(4.5)
    assert rig.reoffers == 0


def test_failing_item_does_not_stop_batch():
    rig = Rig()
    seen = []

    def process(raw):
        seen.append(raw)
        if len(seen) == 1:
            raise RuntimeError("bad block")

    rig.coordinator._process = process
    rig.coordinator.start()
    add_raw_block(rig.doc, make_call_text(call_id="c1"))
    add_raw_block(rig.doc, make_call_text(call_id="c2"))
    rig.timers.advance(0.5)
    assert len(seen) == 2
    assert rig.coordinator.suppressed is False


def test_stop_detaches():
    rig = Rig()
    rig.coordinator.start()
    rig.coordinator.stop()
    add_raw_block(rig.doc, make_call_text())
    rig.timers.advance(5)
    assert rig.processed == []
    assert rig.reoffers == 0
