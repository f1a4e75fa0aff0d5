"""Test harness for streamcall.

Re-exports the public API for convenient imports:
    from tests.harness import FakeTimers, make_pipeline, make_call_text, ...
"""

from tests.harness.clock import FakeHandle, FakeTimers
from tests.harness.builders import (
    add_raw_block,
    make_call_text,
    make_pipeline,
    make_settings,
    rendered_root,
)

__all__ = [
    "FakeHandle",
    "FakeTimers",
    "add_raw_block",
    "make_call_text",
    "make_pipeline",
    "make_settings",
    "rendered_root",
]
