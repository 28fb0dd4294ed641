"""adb transport: device identity, b2g-info queries and root escalation."""

import asyncio
from dataclasses import dataclass
from typing import Protocol

import structlog

from b2g_monitor.config import DeviceConfig
from b2g_monitor.parser import Device, parse_device_list

log = structlog.get_logger()


class DeviceError(Exception):
    """adb could not be run or did not answer."""


class DeviceNotFound(DeviceError):
    """No device in the "device" state is attached."""


class ElevationFailed(DeviceError):
    """`adb root` did not restart adbd as root."""


@dataclass
class QueryResult:
    """Raw output of one remote command."""

    stdout: str
    stderr: str

    @property
    def failed(self) -> bool:
        """True if the command wrote anything to stderr."""
        return bool(self.stderr.strip())


class SnapshotSource(Protocol):
    """Where raw snapshot text comes from."""

    async def identify(self) -> Device: ...

    async def query(self) -> QueryResult: ...

    async def elevate(self) -> None: ...


class AdbSource:
    """SnapshotSource backed by the adb command line tool."""

    def __init__(self, config: DeviceConfig):
        self.config = config

    def _command(self, *args: str) -> list[str]:
        cmd = [self.config.adb_path]
        if self.config.serial:
            cmd += ["-s", self.config.serial]
        return cmd + list(args)

    async def _run(self, *args: str, timeout: float | None = None) -> tuple[int, str, str]:
        """Run an adb command and return (returncode, stdout, stderr).

        The subprocess is killed if the caller is cancelled or the timeout expires.

        Raises:
            DeviceError: adb is missing or did not finish in time
        """
        cmd = self._command(*args)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                stdin=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise DeviceError(f"adb not found: {self.config.adb_path}") from e
        except OSError as e:
            raise DeviceError(f"Failed to run adb: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=timeout or self.config.command_timeout
            )
        except asyncio.TimeoutError as e:
            _kill(proc)
            raise DeviceError(f"adb {' '.join(args)} timed out") from e
        except asyncio.CancelledError:
            _kill(proc)
            raise

        return (
            proc.returncode if proc.returncode is not None else -1,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def identify(self) -> Device:
        """Return the attached device from `adb devices -l`.

        Raises:
            DeviceNotFound: No matching device is attached
            DeviceError: adb failed
        """
        returncode, stdout, stderr = await self._run("devices", "-l")
        if returncode != 0:
            raise DeviceError(stderr.strip() or f"adb devices exited with {returncode}")

        device = parse_device_list(stdout, serial=self.config.serial or None)
        if device is None:
            raise DeviceNotFound("No device connected")
        log.info("device_identified", id=device.id, product=device.product, model=device.model)
        return device

    async def query(self) -> QueryResult:
        """Run `b2g-info` on the device."""
        _, stdout, stderr = await self._run("shell", "b2g-info")
        return QueryResult(stdout=stdout, stderr=stderr)

    async def elevate(self) -> None:
        """Restart adbd as root and wait for the device to come back.

        Raises:
            ElevationFailed: adb refused or the device did not return
        """
        returncode, stdout, stderr = await self._run("root")
        output = f"{stdout}\n{stderr}"
        if returncode != 0 or "cannot run as root" in output:
            raise ElevationFailed(output.strip() or f"adb root exited with {returncode}")

        try:
            returncode, _, stderr = await self._run("wait-for-device")
        except DeviceError as e:
            raise ElevationFailed(str(e)) from e
        if returncode != 0:
            raise ElevationFailed(stderr.strip() or "device did not come back after adb root")
        log.info("adbd_restarted_as_root")


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass  # Process already exited
