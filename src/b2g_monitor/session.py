"""Session state carried across polls.

Each poll replaces the latest Snapshot. Only tracked app series keep history.
"""

import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from b2g_monitor.parser import Device, Snapshot


@dataclass(frozen=True)
class SeriesSample:
    """One tracked-app row as it appears in the report."""

    pid: int
    pss: int | float
    uss: int | float


@dataclass
class TrackedAppSeries:
    """Per-poll samples for one tracked app name."""

    name: str
    samples: list[SeriesSample] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.samples)


class SessionState:
    """Everything one polling session accumulates.

    Owned by the Monitor and handed to the report generator at the end.
    """

    def __init__(
        self,
        apps: Iterable[str] = (),
        *,
        started_at: float | None = None,
    ) -> None:
        self.started_at = started_at if started_at is not None else time.time()
        self.device: Device | None = None
        self.latest: Snapshot | None = None
        self.poll_count = 0
        self.skipped_count = 0
        self.series: dict[str, TrackedAppSeries] = {}
        for name in apps:
            self.series.setdefault(name.lower(), TrackedAppSeries(name=name))

    @property
    def tracking(self) -> bool:
        """True if any app names are tracked."""
        return bool(self.series)

    @property
    def app_names(self) -> list[str]:
        """Tracked app names in configuration order."""
        return [s.name for s in self.series.values()]

    def set_device(self, device: Device) -> None:
        """Record the device identity. Later calls are ignored."""
        if self.device is None:
            self.device = device

    def record(self, snapshot: Snapshot) -> None:
        """Make snapshot the latest view and append tracked app samples."""
        self.latest = snapshot
        self.poll_count += 1
        if not self.series:
            return
        for app in snapshot.apps:
            series = self.series.get(app.name.lower())
            if series is not None:
                series.samples.append(SeriesSample(pid=app.pid, pss=app.pss, uss=app.uss))

    def skip(self) -> None:
        """Count a poll that produced no snapshot."""
        self.skipped_count += 1
