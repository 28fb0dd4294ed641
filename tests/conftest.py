"""Shared test fixtures for b2g-monitor."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from b2g_monitor.config import Config
from b2g_monitor.device import QueryResult
from b2g_monitor.parser import ROOT_REQUIRED_MARKER, Device

DATA_DIR = Path(__file__).parent / "data"

DEVICE = Device(id="f0123456", product="GoFlip2", model="GoFlip2")


@pytest.fixture
def b2g_info_text() -> str:
    """Realistic b2g-info output captured from a KaiOS phone."""
    return (DATA_DIR / "b2g_info.txt").read_text()


def make_blob(*rows: str, header: str = "NAME PID USS PSS") -> str:
    """Build a minimal b2g-info blob with the given process rows."""
    return "\n".join(["  |  megabytes  |", header, *rows])


def root_required_blob() -> str:
    """b2g-info output when adbd is not running as root."""
    return f"{ROOT_REQUIRED_MARKER}\n"


def make_source(*outputs: QueryResult | str | Exception) -> AsyncMock:
    """Create a mock SnapshotSource.

    Each query() call returns the next output; strings become stdout with
    empty stderr, exceptions are raised.
    """
    source = AsyncMock()
    source.identify.return_value = DEVICE
    source.elevate.return_value = None
    source.query.side_effect = [
        QueryResult(stdout=o, stderr="") if isinstance(o, str) else o for o in outputs
    ]
    return source


def make_config(
    tmp_path: Path,
    apps: list[str] | None = None,
    interval: float = 0.0,
    duration: float = 0.0,
) -> Config:
    """Create a Config writing its report under tmp_path."""
    config = Config()
    config.polling.apps = list(apps or [])
    config.polling.interval = interval
    config.polling.duration = duration
    config.report.path = str(tmp_path / "logs" / "report.xlsx")
    return config
