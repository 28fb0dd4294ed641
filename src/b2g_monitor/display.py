"""Live terminal view of the latest snapshot."""

from typing import Protocol

from rich.console import Console, Group
from rich.table import Table
from rich.text import Text

from b2g_monitor.formatting import format_memory
from b2g_monitor.parser import Snapshot
from b2g_monitor.session import SessionState

TITLE_STYLE = "rgb(255,140,0)"
HEADER_STYLE = "bold rgb(10,100,200)"

# Memory stats shown under the app table, in order
MEMORY_FIELDS = [
    ("TOTAL", "total"),
    ("FREE", "free"),
    ("CACHE", "cache"),
    ("FREE+CACHE", "free+cache"),
]


class Display(Protocol):
    """Anything that can show the session each cycle."""

    def render(self, state: SessionState) -> None: ...


def _device_block(state: SessionState) -> Text:
    device = state.device
    text = Text()
    for label, value in (
        ("DEVICE", device.id if device else "-"),
        ("PRODUCT", device.product if device else "-"),
        ("MODEL", device.model if device else "-"),
    ):
        text.append(f"  {label}", style=HEADER_STYLE)
        text.append(f": {value}\n")
    return text


def apps_table(snapshot: Snapshot) -> Table:
    """Build the PID/NAME/USS/PSS table."""
    table = Table(header_style=HEADER_STYLE, box=None, padding=(0, 2))
    table.add_column("PID", justify="right")
    table.add_column("NAME")
    table.add_column("USS", justify="right")
    table.add_column("PSS", justify="right")
    for app in snapshot.apps:
        table.add_row(str(app.pid), app.name, str(app.uss), str(app.pss))
    return table


def _memory_block(snapshot: Snapshot) -> Text:
    text = Text()
    for label, key in MEMORY_FIELDS:
        text.append(f"  {label}", style=HEADER_STYLE)
        text.append(f": {format_memory(snapshot.memory.get(key))}\n")
    return text


def render_snapshot(state: SessionState) -> Group:
    """Compose the full screen for the latest snapshot."""
    snapshot = state.latest or Snapshot()
    return Group(
        Text("Device Detail", style=TITLE_STYLE),
        _device_block(state),
        Text("Running Apps", style=TITLE_STYLE),
        apps_table(snapshot),
        Text(""),
        Text("Memory", style=TITLE_STYLE),
        _memory_block(snapshot),
    )


class LiveDisplay:
    """Clears the terminal and redraws the latest snapshot."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console(highlight=False)

    def render(self, state: SessionState) -> None:
        """Redraw the screen."""
        self.console.clear()
        self.console.print(render_snapshot(state))
