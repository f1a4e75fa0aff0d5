"""CLI entry point for streamcall."""

import argparse
import asyncio
import logging
import sys

from rich.console import Console

import streamcall.app.settings_store
import streamcall.io.execution_store
import streamcall.io.logging_setup
import streamcall.io.transcript
import streamcall.tui.rendering
from streamcall.app.host_page import HostPageWriter
from streamcall.app.pipeline import CallPipeline
from streamcall.app.timers import AsyncioTimers

logger = logging.getLogger(__name__)

# Quiet period after the last chunk so staggered batches and retries settle.
HEADLESS_SETTLE_S = 2.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamcall",
        description="Render and execute function-call directives from streamed model output",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    replay = sub.add_parser("replay", help="Stream a transcript into the host page")
    replay.add_argument("file", help="Transcript: plain text, or JSON lines of {\"text\": ...}")
    replay.add_argument("--chunk-size", type=int, default=None, help="Re-split the transcript into N-char chunks")
    replay.add_argument("--interval", type=float, default=0.05, help="Seconds between chunks (default: 0.05)")
    replay.add_argument(
        "--no-auto-execute",
        action="store_true",
        help="Render calls but leave them for manual activation",
    )
    replay.add_argument("--headless", action="store_true", help="No TUI; print executions to stdout")
    replay.add_argument("--session", type=str, default="replay", help="Session name for log files")
    replay.add_argument(
        "--state-file",
        type=str,
        default=None,
        help="Execution records file (default: $XDG_DATA_HOME/streamcall/executions.json)",
    )

    execs = sub.add_parser("executions", help="List or clear persisted executions")
    execs.add_argument("--clear", action="store_true", help="Delete every persisted execution record")
    execs.add_argument(
        "--forget",
        action="append",
        default=[],
        metavar="CALL_ID",
        help="Delete persisted records for a call id (repeatable)",
    )
    execs.add_argument("--state-file", type=str, default=None, help="Execution records file")
    return parser


def _open_store(state_file: str | None) -> streamcall.io.execution_store.ExecutionStore:
    path = state_file or streamcall.io.execution_store.get_executions_path()
    return streamcall.io.execution_store.ExecutionStore(path)


# ─── replay ──────────────────────────────────────────────────────────────────


async def run_headless(
    transcript: streamcall.io.transcript.Transcript,
    pipeline_kwargs: dict,
    *,
    interval: float,
    console: Console,
    settle: float = HEADLESS_SETTLE_S,
) -> CallPipeline:
    pipeline = CallPipeline(AsyncioTimers(), **pipeline_kwargs)
    pipeline.executor.on_executed(
        lambda record: console.print(streamcall.tui.rendering.render_execution(record))
    )
    pipeline.start()
    try:
        writer = HostPageWriter(pipeline.document)
        writer.begin_message()
        for chunk in transcript.chunks:
            writer.write(chunk)
            await asyncio.sleep(interval)
        writer.end_message()
        await asyncio.sleep(settle)
    finally:
        pipeline.stop()
    return pipeline


def _replay(args) -> int:
    try:
        transcript = streamcall.io.transcript.load(args.file, chunk_size=args.chunk_size)
    except streamcall.io.transcript.TranscriptError as exc:
        print(f"streamcall: {exc}", file=sys.stderr)
        return 2

    streamcall.io.logging_setup.configure(args.session, stderr=args.headless)
    # --no-auto-execute is a session-only override; the TUI then skips persistence.
    overrides = {"auto_execute": False} if args.no_auto_execute else None
    settings = streamcall.app.settings_store.create(overrides)
    store = _open_store(args.state_file)
    logger.info("replaying %s (%d chunks)", transcript.path, len(transcript.chunks))

    if args.headless:
        console = Console()
        pipeline = asyncio.run(
            run_headless(
                transcript,
                {"settings": settings, "store": store},
                interval=args.interval,
                console=console,
                settle=HEADLESS_SETTLE_S,
            )
        )
        pending = pipeline.pending_calls()
        console.print(
            f"[bold]{len(pipeline.tracked_calls())}[/] call(s) tracked, "
            f"[bold]{len(pipeline.executor.history)}[/] executed, "
            f"[bold]{len(pending)}[/] pending"
        )
        return 0

    from streamcall.tui.app import StreamcallApp

    app = StreamcallApp(
        transcript,
        settings=settings,
        store=store,
        session_name=args.session,
        interval=args.interval,
        persist_settings=not args.no_auto_execute,
    )
    app.run()
    return 0


# ─── executions ──────────────────────────────────────────────────────────────


def _executions(args) -> int:
    store = _open_store(args.state_file)
    console = Console()
    try:
        if args.clear:
            store.clear()
            console.print(f"cleared executions in {store.path}")
            return 0
        if args.forget:
            removed = store.remove_call_ids(args.forget)
            console.print(f"removed {removed} record(s)")
            return 0
        records = store.records()
    except streamcall.io.execution_store.StorageError as exc:
        console.print(f"[bold red]{exc}[/]")
        return 1
    if not records:
        console.print("no executions recorded")
    for record in records:
        console.print(streamcall.tui.rendering.render_execution(record))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "replay":
        return _replay(args)
    return _executions(args)


if __name__ == "__main__":
    sys.exit(main())
