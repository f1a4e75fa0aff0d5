"""In-process Textual tests for StreamcallApp."""

import asyncio

import pytest

from streamcall.io.execution_store import ExecutionStore
from streamcall.io.transcript import Transcript, split_chunks
from streamcall.tui.chip import ToggleChip
from tests.harness import make_call_text, make_settings

pytestmark = pytest.mark.textual

TEXT = "Searching now.\n```xml\n" + make_call_text(params={"q": "tui"}) + "\n```\n"


def _app(auto_execute=True):
    from streamcall.tui.app import StreamcallApp

    return StreamcallApp(
        Transcript(path="inline", chunks=tuple(split_chunks(TEXT, 16))),
        settings=make_settings(auto_execute=auto_execute),
        store=ExecutionStore(),
        interval=0,
        persist_settings=False,
    )


async def _replayed(app, pilot):
    await asyncio.wait_for(app.replay_done.wait(), timeout=5)
    await pilot.pause(1.0)


async def test_replay_renders_and_auto_executes():
    app = _app()
    async with app.run_test(size=(120, 40)) as pilot:
        await _replayed(app, pilot)
        assert len(app.pipeline.executor.history) == 1
        assert app.pipeline.executor.history[0].arguments == {"q": "tui"}
        assert app.pipeline.pending_calls() == []


async def test_manual_run_with_auto_execute_off():
    app = _app(auto_execute=False)
    async with app.run_test(size=(120, 40)) as pilot:
        await _replayed(app, pilot)
        assert app.pipeline.executor.history == []
        assert len(app.pipeline.pending_calls()) == 1
        await pilot.press("x")
        await pilot.pause()
        assert len(app.pipeline.executor.history) == 1


async def test_toggle_key_updates_setting_and_chip():
    app = _app()
    async with app.run_test(size=(120, 40)) as pilot:
        await _replayed(app, pilot)
        await pilot.press("a")
        await pilot.pause()
        assert app._settings.get("auto_execute") is False
        assert app.query_one("#auto-chip", ToggleChip).value is False


async def test_clear_tools_key():
    app = _app(auto_execute=False)
    async with app.run_test(size=(120, 40)) as pilot:
        await _replayed(app, pilot)
        assert app.pipeline.tracked_call_ids() == ["c1"]
        await pilot.press("c")
        await pilot.pause()
        assert app.pipeline.tracked_call_ids() == []
