"""Textual app: replays a transcript into the host page and shows it live.

// [LAW:one-way-deps] The app drives CallPipeline through its public surface
//   (document, settings, process/clear/run); it owns no tracking state.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import snarfx
from rich.text import Text
from snarfx import textual as stx
from snarfx.hot_reload import HotReloadStore
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, VerticalScroll
from textual.widgets import Footer, Header, RichLog, Static

import streamcall.app.settings_store as settings_store
import streamcall.tui.rendering as rendering
from streamcall.app.executor import HandlerRegistry
from streamcall.app.host_page import HostPageWriter
from streamcall.app.pipeline import CallPipeline
from streamcall.app.timers import AsyncioTimers
from streamcall.io.execution_store import ExecutionRecord, ExecutionStore
from streamcall.io.logging_setup import ROOT_LOGGER
from streamcall.io.transcript import Transcript
from streamcall.tui.chip import ActionChip, ToggleChip

logger = logging.getLogger(__name__)

PAGE_REFRESH_S = 0.2


class LogsPanel(RichLog):
    """Mirror of streamcall log records."""

    LEVEL_STYLES = {
        "ERROR": "bold red",
        "WARNING": "bold yellow",
        "INFO": "bold blue",
        "DEBUG": "dim",
    }

    def __init__(self, **kwargs):
        super().__init__(highlight=False, markup=False, wrap=True, max_lines=1000, **kwargs)

    def app_log(self, level: str, message: str) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        t = Text()
        t.append(f"[{timestamp}] ", style="dim")
        t.append(f"{level:7s} ", style=self.LEVEL_STYLES.get(level, "dim"))
        t.append(message)
        self.write(t)


class _PanelLogHandler(logging.Handler):
    def __init__(self, app: "StreamcallApp") -> None:
        super().__init__(logging.DEBUG)
        self._app = app
        self.setFormatter(logging.Formatter("[%(name)s] %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._app.call_later(self._app.app_log, record.levelname, self.format(record))
        except Exception:
            self.handleError(record)


class StreamcallApp(App):
    """TUI for streamcall."""

    TITLE = "streamcall"

    CSS = """
    #page {
        height: 1fr;
    }
    #status-bar {
        height: 1;
        dock: bottom;
    }
    #status {
        width: 1fr;
        color: $text-muted;
    }
    #logs-panel {
        height: 10;
        border-top: solid $panel-lighten-2;
    }
    """

    BINDINGS = [
        Binding("a", "toggle_auto_execute", "Auto-execute"),
        Binding("x", "run_pending", "Run pending"),
        Binding("c", "clear_tools", "Clear tools"),
        Binding("l", "toggle_logs", "Logs"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        transcript: Transcript | None = None,
        *,
        settings: HotReloadStore | None = None,
        store: ExecutionStore | None = None,
        handlers: HandlerRegistry | None = None,
        session_name: str = "replay",
        interval: float = 0.05,
        persist_settings: bool = True,
    ):
        super().__init__()
        self._transcript = transcript
        self._settings = settings or settings_store.create(load_from_disk=False)
        self._store = store
        self._handlers = handlers
        self._interval = interval
        self._persist_settings = persist_settings
        self._disposers: list = []
        self._reactions: list = []
        self._log_handler: _PanelLogHandler | None = None
        self.pipeline: CallPipeline | None = None
        self.replay_done = asyncio.Event()
        self.sub_title = f"session: {session_name}"

    def compose(self) -> ComposeResult:
        yield Header()
        with VerticalScroll(id="page-scroll"):
            yield Static(id="page")
        yield LogsPanel(id="logs-panel")
        with Horizontal(id="status-bar"):
            yield ToggleChip("auto-execute", value=bool(self._settings.get("auto_execute")), id="auto-chip")
            yield ActionChip("run pending", action="run_pending", id="run-chip")
            yield ActionChip("clear tools", action="clear_tools", id="clear-chip")
            yield Static(id="status")
        yield Footer()

    def on_mount(self) -> None:
        self.pipeline = CallPipeline(
            AsyncioTimers(),
            settings=self._settings,
            store=self._store,
            handlers=self._handlers,
        )
        # Wire snarfx auto-marshal now that call_from_thread is available
        snarfx.set_scheduler(self.call_from_thread)
        if self._persist_settings:
            self._reactions.extend(settings_store.setup_reactions(self._settings, {"ledger": self.pipeline.ledger}))
        self._reactions.append(stx.reaction(self,
            lambda: bool(self._settings.get("auto_execute")),
            lambda val: self.query_one("#auto-chip", ToggleChip).set_value(val),
        ))
        self._disposers.append(self.pipeline.executor.on_executed(self._on_executed))

        self._log_handler = _PanelLogHandler(self)
        logging.getLogger(ROOT_LOGGER).addHandler(self._log_handler)

        self.pipeline.start()
        self.set_interval(PAGE_REFRESH_S, self._refresh_page)
        if self._transcript is not None:
            self.run_worker(self._replay(self._transcript), exclusive=True)
        else:
            self.replay_done.set()
        self.app_log("INFO", "streamcall started")

    def on_unmount(self) -> None:
        if self._log_handler is not None:
            logging.getLogger(ROOT_LOGGER).removeHandler(self._log_handler)
            self._log_handler = None
        for dispose in self._disposers:
            dispose()
        self._disposers.clear()
        for r in self._reactions:
            r.dispose()
        self._reactions.clear()
        if self.pipeline is not None:
            self.pipeline.stop()

    # ─── Replay ───────────────────────────────────────────────────────

    async def _replay(self, transcript: Transcript) -> None:
        assert self.pipeline is not None
        writer = HostPageWriter(self.pipeline.document)
        writer.begin_message()
        for chunk in transcript.chunks:
            writer.write(chunk)
            await asyncio.sleep(self._interval)
        writer.end_message()
        self.app_log("INFO", f"replay of {transcript.path} finished ({len(transcript.chunks)} chunks)")
        self.replay_done.set()

    # ─── View ─────────────────────────────────────────────────────────

    def app_log(self, level: str, message: str) -> None:
        panel = self.query_one(LogsPanel)
        panel.app_log(level, message)

    def _refresh_page(self) -> None:
        if self.pipeline is None:
            return
        self.query_one("#page", Static).update(rendering.render_document(self.pipeline.document))
        tracked = self.pipeline.tracked_calls()
        pending = self.pipeline.pending_calls()
        executed = len(self.pipeline.executor.history)
        self.query_one("#status", Static).update(
            f" tracked {len(tracked)} · pending {len(pending)} · executed {executed}"
        )

    def _on_executed(self, record: ExecutionRecord) -> None:
        self.app_log("INFO", rendering.render_execution(record).plain)
        self._refresh_page()

    # ─── Actions ──────────────────────────────────────────────────────

    def on_toggle_chip_changed(self, event: ToggleChip.Changed) -> None:
        self._settings.set("auto_execute", event.value)

    def action_toggle_auto_execute(self) -> None:
        self._settings.set("auto_execute", not self._settings.get("auto_execute"))

    def action_run_pending(self) -> None:
        if self.pipeline is None:
            return
        if not self.pipeline.run_latest_pending():
            self.app_log("INFO", "no pending call to run")
        self._refresh_page()

    def action_clear_tools(self) -> None:
        if self.pipeline is None:
            return
        cleared = self.pipeline.clear_tools()
        self.app_log("INFO", f"cleared {len(cleared)} call(s)")
        self._refresh_page()

    def action_toggle_logs(self) -> None:
        panel = self.query_one(LogsPanel)
        panel.display = not panel.display
