"""Parser for `b2g-info` text output.

The command prints three sections: a process table (header on the second
line), a "System memory info" block and a "Low-memory killer parameters"
block. Example (abridged):

                              |     megabytes    |
               NAME  PID PPID CPU(s) NICE  USS  PSS  RSS SWAP VSIZE OOM_ADJ USER
                b2g  181    1  101.5    0 43.4 49.0 61.3  0.0 224.3       0 root
      Built-in Keyboa 1017  305    3.1   18  4.9  7.8 16.5  0.0  68.0     667 u0_a1017

    System memory info:

                Total 175.9 MB
         Free + cache  65.2 MB

    Low-memory killer parameters:

      notify_trigger 14336 KB

      oom_adj min_free
            0  4096 KB
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

ROOT_REQUIRED_MARKER = "This program needs to run as the root user in order to query pids."
SYSTEM_MEMORY_MARKER = "System memory info"
LOW_MEMORY_MARKER = "Low-memory killer parameters"

# " + " / " - " between words belong to one stat name ("Free + cache")
_SIGN_SPACING = re.compile(r"\s+([+-])\s+")


class RootRequired(Exception):
    """b2g-info refused to run because adbd is not running as root."""


class SnapshotParseError(ValueError):
    """Raw text is too short or lacks a header line."""


@dataclass(frozen=True)
class Device:
    """Identity of the attached device. Parsed once per session."""

    id: str
    product: str
    model: str


@dataclass(frozen=True)
class MemoryValue:
    """A value token with its unit token, both as printed (e.g. "175.9", "MB")."""

    value: str | None
    unit: str | None

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {"value": self.value, "unit": self.unit}


@dataclass
class AppSample:
    """One row of the process table."""

    name: str
    pid: int
    pss: int | float
    uss: int | float
    columns: dict[str, str] = field(default_factory=dict)  # every header column, raw

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "name": self.name,
            "pid": self.pid,
            "pss": self.pss,
            "uss": self.uss,
            "columns": dict(self.columns),
        }


@dataclass
class LowMemory:
    """Low-memory killer parameters.

    oom_adj_levels and min_free_thresholds are aligned by position.
    """

    notify_trigger: MemoryValue | None = None
    oom_adj_levels: list[str] = field(default_factory=list)
    min_free_thresholds: list[MemoryValue] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "notify_trigger": self.notify_trigger.to_dict() if self.notify_trigger else None,
            "oom_adj": list(self.oom_adj_levels),
            "min_free": [v.to_dict() for v in self.min_free_thresholds],
        }


@dataclass
class Snapshot:
    """One poll's fully parsed result."""

    apps: list[AppSample] = field(default_factory=list)
    memory: dict[str, MemoryValue] = field(default_factory=dict)
    low_memory: LowMemory = field(default_factory=LowMemory)

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "apps": [a.to_dict() for a in self.apps],
            "memory": {k: v.to_dict() for k, v in self.memory.items()},
            "low_memory": self.low_memory.to_dict(),
        }


def _is_number(token: str) -> bool:
    try:
        float(token)
    except ValueError:
        return False
    return True


def _to_number(token: str) -> int | float:
    """Parse "20" as int and "43.4" as float. Raises ValueError otherwise."""
    try:
        return int(token)
    except ValueError:
        return float(token)


def _tokenize(line: str) -> list[str]:
    """Split a row into tokens, keeping two-word names together."""
    tokens = _SIGN_SPACING.sub(r"\1", line).split()
    if len(tokens) > 1 and not _is_number(tokens[1]):
        tokens[0:2] = [f"{tokens[0]} {tokens[1]}"]
    return tokens


def _token(tokens: list[str], index: int) -> str | None:
    return tokens[index] if index < len(tokens) else None


# Column name -> (AppSample field, converter)
_APP_FIELDS = {
    "name": ("name", str),
    "pid": ("pid", int),
    "pss": ("pss", _to_number),
    "uss": ("uss", _to_number),
}


def build_app_sample(pairs: list[tuple[str, str]]) -> AppSample | None:
    """Resolve ordered (column, token) pairs into an AppSample.

    Returns None when a required column is missing or not numeric.
    """
    values: dict[str, object] = {}
    for column, token in pairs:
        target = _APP_FIELDS.get(column)
        if target is None:
            continue
        attr, convert = target
        try:
            values[attr] = convert(token)
        except ValueError:
            return None
    if len(values) != len(_APP_FIELDS):
        return None
    return AppSample(columns=dict(pairs), **values)  # type: ignore[arg-type]


def parse_snapshot(raw: str, app_filter: Iterable[str] = ()) -> Snapshot:
    """Parse one b2g-info output blob.

    Args:
        raw: Full stdout of `b2g-info`
        app_filter: App names to keep (case-insensitive). Empty keeps all rows.

    Returns:
        Parsed Snapshot

    Raises:
        RootRequired: The first line is the "needs root" message
        SnapshotParseError: Fewer than two lines or no header
    """
    lines = [line.replace("\r", "") for line in raw.split("\n")]

    if lines and ROOT_REQUIRED_MARKER in lines[0]:
        raise RootRequired(lines[0].strip())

    if len(lines) < 2:
        raise SnapshotParseError(f"Expected at least 2 lines, got {len(lines)}")

    headers = [h.lower() for h in lines[1].split()]
    if not headers:
        raise SnapshotParseError("Missing column header line")

    wanted = {name.lower() for name in app_filter}
    snapshot = Snapshot()
    in_system_memory = False
    in_low_memory = False

    for line in lines[2:]:
        if LOW_MEMORY_MARKER in line:
            in_low_memory, in_system_memory = True, False
            continue
        if SYSTEM_MEMORY_MARKER in line:
            # Low-memory mode holds to the end of input
            in_system_memory = not in_low_memory
            continue

        tokens = _tokenize(line)
        if not tokens:
            continue

        if in_low_memory:
            _parse_low_memory_row(snapshot.low_memory, tokens)
        elif in_system_memory:
            snapshot.memory[tokens[0].lower()] = MemoryValue(_token(tokens, 1), _token(tokens, 2))
        else:
            if len(tokens) != len(headers):
                continue
            app = build_app_sample(list(zip(headers, tokens)))
            if app is None:
                continue
            if wanted and app.name.lower() not in wanted:
                continue
            snapshot.apps.append(app)

    return snapshot


def _parse_low_memory_row(low_memory: LowMemory, tokens: list[str]) -> None:
    first = tokens[0]
    if first == "notify_trigger":
        low_memory.notify_trigger = MemoryValue(_token(tokens, 1), _token(tokens, 2))
    elif first.startswith("oom_adj") or "min_free" in tokens:
        return
    else:
        low_memory.oom_adj_levels.append(first)
        low_memory.min_free_thresholds.append(MemoryValue(_token(tokens, 1), _token(tokens, 2)))


def parse_device_line(line: str) -> Device:
    """Parse one `adb devices -l` row.

    Example: "f0123456 device usb:1-1 product:GoFlip2 model:GoFlip2 device:GoFlip2"

    Raises:
        ValueError: Row lacks a serial
    """
    tokens = line.replace("\r", "").split()
    if not tokens:
        raise ValueError("Empty device line")
    props = dict(t.split(":", 1) for t in tokens[2:] if ":" in t)
    return Device(
        id=tokens[0],
        product=props.get("product", ""),
        model=props.get("model", ""),
    )


def parse_device_list(text: str, serial: str | None = None) -> Device | None:
    """Return the first attached device in `adb devices -l` output.

    Only rows in the "device" state count (not "offline" or "unauthorized").
    """
    for line in text.splitlines():
        tokens = line.split()
        if len(tokens) < 2 or tokens[1] != "device":
            continue
        if serial and tokens[0] != serial:
            continue
        return parse_device_line(line)
    return None
