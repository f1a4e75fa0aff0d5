"""Clickable chips for the status bar.

ToggleChip shows a boolean setting (auto-execute); ActionChip runs an app
action (clear tools, run pending).
"""

from __future__ import annotations

from textual.message import Message
from textual.widgets import Static


class ActionChip(Static):
    """Plain-text button that dispatches an app action on click."""

    ALLOW_SELECT = False
    DEFAULT_CSS = """
    ActionChip {
        width: auto;
        height: 1;
        margin-right: 1;
        text-style: bold;
        background: $panel-lighten-2;
        color: $text;
    }

    ActionChip:hover {
        background: $panel-lighten-1;
    }
    """

    def __init__(self, label: str, *, action: str, **kwargs):
        super().__init__(f" {label} ", **kwargs)
        self.action = action

    async def on_click(self, event) -> None:
        await self.app.run_action(self.action)


class ToggleChip(Static):
    """Boolean chip: label + ON/OFF, dim when off. Click or Space toggles."""

    ALLOW_SELECT = False
    can_focus = True

    DEFAULT_CSS = """
    ToggleChip {
        width: auto;
        height: 1;
        margin-right: 1;
        text-style: bold;
        background: $accent;
        color: $text;
    }

    ToggleChip:focus {
        text-style: bold underline;
    }

    ToggleChip.-off {
        background: $surface-lighten-1;
        color: $text-muted;
    }
    """

    class Changed(Message):
        def __init__(self, chip: "ToggleChip", value: bool) -> None:
            super().__init__()
            self.chip = chip
            self.value = value

    def __init__(self, label: str, *, value: bool = False, **kwargs):
        super().__init__("", **kwargs)
        self._label = label
        self.value = value
        self._refresh_label()

    def set_value(self, value: bool) -> None:
        """Update display without posting Changed."""
        self.value = bool(value)
        self._refresh_label()

    def _refresh_label(self) -> None:
        self.update(f" {self._label}  {'ON' if self.value else 'OFF'} ")
        self.set_class(not self.value, "-off")

    def toggle(self) -> None:
        self.set_value(not self.value)
        self.post_message(self.Changed(self, self.value))

    async def on_click(self, event) -> None:
        self.toggle()

    def on_key(self, event) -> None:
        if event.key == "space":
            event.stop()
            event.prevent_default()
            self.toggle()
