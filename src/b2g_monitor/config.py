"""Configuration system for b2g-monitor."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit


@dataclass
class PollingConfig:
    """Polling session configuration."""

    apps: list[str] = field(default_factory=list)  # Tracked app names (empty = no report)
    interval: float = 0.0  # Seconds between polls (0 = back-to-back)
    duration: float = 10.0  # Session length in seconds (0 = until stopped)


@dataclass
class DeviceConfig:
    """adb transport configuration."""

    adb_path: str = "adb"
    serial: str = ""  # Empty = first attached device
    command_timeout: float = 30.0  # Seconds before an adb command counts as failed


@dataclass
class ReportConfig:
    """Report output configuration."""

    path: str = "logs/b2g_logs.xlsx"

    @property
    def report_path(self) -> Path:
        """Report path as a Path."""
        return Path(self.path)


@dataclass
class SystemConfig:
    """Logging configuration."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    polling: PollingConfig = field(default_factory=PollingConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "b2g-monitor"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "b2g-monitor"

    @property
    def log_path(self) -> Path:
        """JSON Lines log path."""
        return self.state_dir / "monitor.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("polling", "device", "report", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ValueError: File is not valid TOML or holds out-of-range values
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        device_data = data.get("device", {})
        report_data = data.get("report", {})
        system_data = data.get("system", {})

        dev_defaults = defaults.device
        sys_defaults = defaults.system

        return cls(
            polling=_load_polling_config(data.get("polling", {})),
            device=DeviceConfig(
                adb_path=str(device_data.get("adb_path", dev_defaults.adb_path)),
                serial=str(device_data.get("serial", dev_defaults.serial)),
                command_timeout=_positive(
                    "command_timeout",
                    device_data.get("command_timeout", dev_defaults.command_timeout),
                ),
            ),
            report=ReportConfig(
                path=str(report_data.get("path", defaults.report.path)),
            ),
            system=SystemConfig(
                log_max_bytes=system_data.get("log_max_bytes", sys_defaults.log_max_bytes),
                log_backup_count=system_data.get(
                    "log_backup_count", sys_defaults.log_backup_count
                ),
            ),
        )


def _positive(name: str, value: float) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {value}")
    return float(value)


def _non_negative(name: str, value: float) -> float:
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return float(value)


def _load_polling_config(data: dict) -> PollingConfig:
    """Load polling config from TOML data, using dataclass defaults for missing fields."""
    defaults = PollingConfig()

    apps = data.get("apps", defaults.apps)
    if isinstance(apps, str):
        apps = [apps]

    return PollingConfig(
        apps=[str(a) for a in apps],
        interval=_non_negative("interval", data.get("interval", defaults.interval)),
        duration=_non_negative("duration", data.get("duration", defaults.duration)),
    )
