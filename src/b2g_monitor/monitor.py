"""Polling session: connect, poll b2g-info until stopped, then write the report."""

import asyncio
import signal
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path
from typing import NoReturn, TypeVar

import structlog

from b2g_monitor import logging as ui
from b2g_monitor.config import Config
from b2g_monitor.device import AdbSource, DeviceError, QueryResult, SnapshotSource
from b2g_monitor.display import Display, LiveDisplay
from b2g_monitor.parser import RootRequired, SnapshotParseError, parse_snapshot
from b2g_monitor.report import build_report, write_report
from b2g_monitor.session import SessionState

log = structlog.get_logger()

T = TypeVar("T")

# Returned by _until_stopped when a stop request won the race
_ABANDONED = object()


class MonitorState(Enum):
    """Polling session lifecycle."""

    CONNECTING = "connecting"
    POLLING = "polling"
    ROOT_RETRY = "root_retry"
    TERMINATING = "terminating"
    DONE = "done"


class SessionAborted(Exception):
    """Session ended by a fatal error. No report is written."""


class DeviceDisconnected(SessionAborted):
    """The device stopped answering mid-session."""


class Monitor:
    """Drives one polling session.

    Stop triggers (SIGINT, SIGTERM, duration timer) all go through
    request_stop(). The loop finishes the cycle in progress, then the report
    is generated exactly once.
    """

    def __init__(
        self,
        config: Config,
        source: SnapshotSource | None = None,
        display: Display | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.source = source or AdbSource(config.device)
        self.display = display or LiveDisplay()
        self._clock = clock

        self.state = MonitorState.CONNECTING
        self.session = SessionState(config.polling.apps, started_at=clock())
        self.report_path: Path | None = None
        self.stop_reason: str | None = None

        self._shutdown_event = asyncio.Event()
        self._report_done = False

    # ─────────────────────────────────────────────────────────────────────
    # Termination
    # ─────────────────────────────────────────────────────────────────────

    def request_stop(self, reason: str) -> None:
        """Ask the session to end after the current cycle. Idempotent."""
        if self.stop_reason is None:
            self.stop_reason = reason
            log.info("stop_requested", reason=reason)
        self._shutdown_event.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        ui.signal_received(sig.name)
        self.request_stop(sig.name)

    def _abort(self, exc: SessionAborted) -> SessionAborted:
        self.state = MonitorState.DONE
        return exc

    # ─────────────────────────────────────────────────────────────────────
    # Session
    # ─────────────────────────────────────────────────────────────────────

    async def run(self) -> Path | None:
        """Run the session to completion.

        Returns:
            Path of the written report, or None if nothing was tracked

        Raises:
            SessionAborted: Device missing or lost, root escalation failed,
                or the report could not be written
        """
        loop = asyncio.get_running_loop()
        signals = (signal.SIGTERM, signal.SIGINT)
        for sig in signals:
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        # Session length counts from startup, device discovery included
        duration = self.config.polling.duration
        timer = loop.call_later(duration, self.request_stop, "duration") if duration else None
        try:
            await self._connect()
            await self._poll_loop()
            return self._finish()
        finally:
            if timer is not None:
                timer.cancel()
            for sig in signals:
                loop.remove_signal_handler(sig)

    async def _until_stopped(self, aw: Awaitable[T], what: str) -> T | object:
        """Await aw unless a stop is requested first.

        Returns the result, or _ABANDONED after cancelling aw when the stop
        request won. Exceptions raised by aw propagate.
        """
        task = asyncio.ensure_future(aw)
        stop = asyncio.ensure_future(self._shutdown_event.wait())
        try:
            done, _ = await asyncio.wait({task, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()

        if task not in done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            log.info(f"{what}_abandoned", reason=self.stop_reason)
            return _ABANDONED
        return task.result()

    async def _connect(self) -> None:
        self.state = MonitorState.CONNECTING
        ui.connecting()
        try:
            device = await self._until_stopped(self.source.identify(), "identify")
        except DeviceError as e:
            ui.no_device()
            log.error("device_identify_failed", error=str(e))
            raise self._abort(SessionAborted(str(e))) from e
        if device is _ABANDONED:
            return

        self.session.set_device(device)
        ui.device_connected(device.id, device.product, device.model)

    async def _poll_loop(self) -> None:
        """Poll until a stop is requested.

        With interval 0 the next poll starts on the next loop tick; otherwise
        the wait ends early when a stop is requested.
        """
        self.state = MonitorState.POLLING
        interval = self.config.polling.interval

        while not self._shutdown_event.is_set():
            await self._poll_once()

            if self._shutdown_event.is_set():
                break

            if interval <= 0:
                await asyncio.sleep(0)
                continue
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass  # Normal timeout, continue to next poll

        self.state = MonitorState.TERMINATING

    async def _poll_once(self) -> None:
        """One poll cycle, including at most one root escalation retry."""
        for attempt in range(2):
            result = await self._query()
            if result is None:
                return

            if result.failed:
                self._disconnected(result.stderr.strip())

            try:
                snapshot = parse_snapshot(result.stdout, self.config.polling.apps)
            except RootRequired as e:
                if attempt:
                    ui.root_failed()
                    log.error("root_still_required")
                    raise self._abort(SessionAborted(str(e))) from e
                if not await self._elevate():
                    return
                continue
            except SnapshotParseError as e:
                ui.sample_skipped(str(e))
                log.warning("sample_skipped", error=str(e))
                self.session.skip()
                return

            self.session.record(snapshot)
            self.display.render(self.session)
            return

    async def _query(self) -> QueryResult | None:
        """Run one query, abandoning it if a stop is requested first."""
        try:
            result = await self._until_stopped(self.source.query(), "query")
        except DeviceError as e:
            self._disconnected(str(e))
        return None if result is _ABANDONED else result

    def _disconnected(self, detail: str) -> NoReturn:
        device_id = self.session.device.id if self.session.device else "unknown"
        ui.device_disconnected(device_id)
        log.error("device_disconnected", device=device_id, detail=detail)
        raise self._abort(DeviceDisconnected(detail or f"{device_id} disconnected"))

    async def _elevate(self) -> bool:
        """Restart adbd as root. Returns False if a stop cut it short."""
        self.state = MonitorState.ROOT_RETRY
        ui.root_retry()
        try:
            result = await self._until_stopped(self.source.elevate(), "elevate")
        except DeviceError as e:
            ui.root_failed()
            log.error("root_escalation_failed", error=str(e))
            raise self._abort(SessionAborted(str(e))) from e
        self.state = MonitorState.POLLING
        return result is not _ABANDONED

    def _finish(self) -> Path | None:
        """Generate the report. Only the first call writes anything."""
        if self._report_done:
            return self.report_path
        self._report_done = True
        self.state = MonitorState.TERMINATING

        try:
            if not self.session.tracking:
                ui.no_tracked_apps()
                return None
            if self.session.poll_count == 0:
                ui.no_samples()
                return None

            workbook = build_report(self.session, finished_at=self._clock())
            path = self.config.report.report_path
            try:
                self.report_path = write_report(workbook, path)
            except OSError as e:
                ui.report_failed(str(path), e.strerror or str(e))
                log.error("report_write_failed", path=str(path), error=str(e))
                raise SessionAborted(f"Could not write report to {path}: {e}") from e
            log.info(
                "session_finished",
                reason=self.stop_reason,
                polls=self.session.poll_count,
                skipped=self.session.skipped_count,
            )
            ui.report_written(str(self.report_path))
            return self.report_path
        finally:
            self.state = MonitorState.DONE


async def run_monitor(config: Config | None = None) -> Path | None:
    """Run one polling session.

    Args:
        config: Optional config, loads from file if not provided
    """
    if config is None:
        config = Config.load()

    ui.configure(config)

    monitor = Monitor(config)
    try:
        return await monitor.run()
    except SessionAborted:
        raise
    except Exception as e:
        log.exception("monitor_crashed", error=str(e))
        raise
