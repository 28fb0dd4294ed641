"""Tests for the polling session."""

import asyncio
import signal
from unittest.mock import MagicMock, patch

import pytest

from b2g_monitor.device import DeviceError, DeviceNotFound, ElevationFailed, QueryResult
from b2g_monitor.monitor import DeviceDisconnected, Monitor, MonitorState, SessionAborted

from conftest import DEVICE, make_blob, make_config, make_source, root_required_blob

GOOD = make_blob("App1 100 10 20", "App2 200 30 40")
GOOD_2 = make_blob("App1 100 30 40", "App2 200 30 40")


def stop_after(monitor: Monitor, polls: int, *reasons: str) -> MagicMock:
    """Display that requests a stop once `polls` snapshots were rendered."""
    display = MagicMock()

    def render(state):
        if state.poll_count >= polls:
            for reason in reasons or ("test",):
                monitor.request_stop(reason)

    display.render.side_effect = render
    return display


def make_monitor(config, source, polls: int = 1, *reasons: str) -> Monitor:
    monitor = Monitor(config, source=source, display=MagicMock(), clock=lambda: 1000.0)
    monitor.display = stop_after(monitor, polls, *reasons)
    return monitor


# === Initial state ===


def test_monitor_init(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    monitor = Monitor(config, source=make_source(), display=MagicMock(), clock=lambda: 5.0)

    assert monitor.state is MonitorState.CONNECTING
    assert monitor.session.started_at == 5.0
    assert monitor.session.app_names == ["App1"]
    assert monitor.stop_reason is None


def test_request_stop_keeps_first_reason(tmp_path):
    monitor = Monitor(make_config(tmp_path), source=make_source(), display=MagicMock())

    monitor.request_stop("SIGINT")
    monitor.request_stop("duration")

    assert monitor.stop_reason == "SIGINT"
    assert monitor._shutdown_event.is_set()


def test_signal_handler_requests_stop(tmp_path):
    monitor = Monitor(make_config(tmp_path), source=make_source(), display=MagicMock())

    monitor._handle_signal(signal.SIGTERM)

    assert monitor.stop_reason == "SIGTERM"


# === Normal sessions ===


@pytest.mark.asyncio
async def test_run_writes_report(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    source = make_source(GOOD, GOOD_2)
    monitor = make_monitor(config, source, 2)

    path = await monitor.run()

    assert path == config.report.report_path
    assert path.exists()
    assert monitor.state is MonitorState.DONE
    assert monitor.session.device == DEVICE
    assert [s.pss for s in monitor.session.series["app1"].samples] == [20, 40]
    assert monitor.display.render.call_count == 2


@pytest.mark.asyncio
async def test_double_stop_writes_report_once(tmp_path):
    """Signal plus duration expiry in the same tick produce one write."""
    config = make_config(tmp_path, apps=["App1"])
    monitor = make_monitor(config, make_source(GOOD), 1, "SIGINT", "duration")

    with patch("b2g_monitor.monitor.write_report", return_value=tmp_path / "r.xlsx") as write:
        await monitor.run()
        monitor._finish()
        monitor._finish()

    assert write.call_count == 1
    assert monitor.stop_reason == "SIGINT"


@pytest.mark.asyncio
async def test_duration_timer_stops_session(tmp_path):
    config = make_config(tmp_path, apps=["App1"], interval=0.01, duration=0.05)
    source = make_source()
    source.query.side_effect = None
    source.query.return_value = QueryResult(stdout=GOOD, stderr="")
    monitor = Monitor(config, source=source, display=MagicMock())

    path = await asyncio.wait_for(monitor.run(), timeout=5.0)

    assert monitor.stop_reason == "duration"
    assert path is not None and path.exists()
    assert len(monitor.session.series["app1"]) >= 1


@pytest.mark.asyncio
async def test_interval_wait_ends_on_stop(tmp_path):
    """A long interval does not delay shutdown."""
    config = make_config(tmp_path, apps=["App1"], interval=60.0)
    monitor = make_monitor(config, make_source(GOOD), 1)

    await asyncio.wait_for(monitor.run(), timeout=5.0)

    assert monitor.session.poll_count == 1


@pytest.mark.asyncio
async def test_back_to_back_polling(tmp_path):
    config = make_config(tmp_path, apps=["App1"], interval=0.0)
    source = make_source(GOOD, GOOD, GOOD)
    monitor = make_monitor(config, source, 3)

    await monitor.run()

    assert source.query.await_count == 3
    assert len(monitor.session.series["app1"]) == 3


@pytest.mark.asyncio
async def test_no_tracked_apps_skips_report(tmp_path):
    config = make_config(tmp_path)
    monitor = make_monitor(config, make_source(GOOD), 1)

    with patch("b2g_monitor.monitor.write_report") as write:
        path = await monitor.run()

    assert path is None
    write.assert_not_called()
    assert monitor.display.render.call_count == 1
    assert [a.name for a in monitor.session.latest.apps] == ["App1", "App2"]


@pytest.mark.asyncio
async def test_filter_limits_displayed_apps(tmp_path):
    config = make_config(tmp_path, apps=["App2"])
    monitor = make_monitor(config, make_source(GOOD), 1)

    await monitor.run()

    assert [a.name for a in monitor.session.latest.apps] == ["App2"]


@pytest.mark.asyncio
async def test_stop_during_query_abandons_it(tmp_path):
    """A query still waiting on the device is cancelled, not parsed."""
    config = make_config(tmp_path, apps=["App1"])
    cancelled = asyncio.Event()

    async def hang():
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise

    source = make_source()
    source.query.side_effect = hang
    monitor = Monitor(config, source=source, display=MagicMock())
    asyncio.get_running_loop().call_later(0.01, monitor.request_stop, "SIGINT")

    with patch("b2g_monitor.monitor.write_report") as write:
        path = await asyncio.wait_for(monitor.run(), timeout=5.0)

    assert cancelled.is_set()
    assert path is None
    write.assert_not_called()
    monitor.display.render.assert_not_called()


@pytest.mark.asyncio
async def test_duration_counts_from_startup(tmp_path):
    """A slow device lookup is part of the session, not added to it."""
    config = make_config(tmp_path, apps=["App1"], duration=0.2)

    async def slow_identify():
        await asyncio.sleep(0.5)
        return DEVICE

    source = make_source(GOOD)
    source.identify.side_effect = slow_identify
    monitor = Monitor(config, source=source, display=MagicMock())
    loop = asyncio.get_running_loop()

    started = loop.time()
    path = await asyncio.wait_for(monitor.run(), timeout=5.0)

    assert loop.time() - started < 0.45
    assert monitor.stop_reason == "duration"
    assert path is None
    assert monitor.session.device is None
    source.query.assert_not_called()


@pytest.mark.asyncio
async def test_stop_during_elevation_abandons_it(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    cancelled = asyncio.Event()

    async def hang():
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise

    source = make_source(root_required_blob())
    source.elevate.side_effect = hang
    monitor = Monitor(config, source=source, display=MagicMock())
    asyncio.get_running_loop().call_later(0.01, monitor.request_stop, "SIGINT")

    path = await asyncio.wait_for(monitor.run(), timeout=5.0)

    assert cancelled.is_set()
    assert path is None
    assert source.query.await_count == 1
    assert monitor.state is MonitorState.DONE


# === Recoverable errors ===


@pytest.mark.asyncio
async def test_malformed_cycle_is_skipped(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    monitor = make_monitor(config, make_source(GOOD, "garbage", GOOD_2), 2)

    path = await monitor.run()

    assert monitor.session.skipped_count == 1
    assert len(monitor.session.series["app1"]) == 2
    assert path is not None


@pytest.mark.asyncio
async def test_malformed_cycle_leaves_series_unchanged(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    source = make_source(GOOD, "", GOOD)
    monitor = make_monitor(config, source, 2)
    lengths = []
    render = monitor.display.render.side_effect

    def track(state):
        lengths.append(len(state.series["app1"]))
        render(state)

    monitor.display.render.side_effect = track

    await monitor.run()

    assert lengths == [1, 2]
    assert source.query.await_count == 3


@pytest.mark.asyncio
async def test_root_required_triggers_one_elevation(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    source = make_source(root_required_blob(), GOOD)
    monitor = make_monitor(config, source, 1)

    await monitor.run()

    source.elevate.assert_awaited_once()
    assert len(monitor.session.series["app1"]) == 1


# === Fatal errors ===


@pytest.mark.asyncio
async def test_identify_failure_is_fatal(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    source = make_source()
    source.identify.side_effect = DeviceNotFound("No device connected")
    monitor = Monitor(config, source=source, display=MagicMock())

    with pytest.raises(SessionAborted):
        await monitor.run()

    source.query.assert_not_called()
    assert monitor.state is MonitorState.DONE
    assert not config.report.report_path.exists()


@pytest.mark.asyncio
async def test_stderr_means_disconnected(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    source = make_source(GOOD, QueryResult(stdout="", stderr="error: device not found"))
    monitor = make_monitor(config, source, 5)

    with pytest.raises(DeviceDisconnected):
        await monitor.run()

    assert monitor.state is MonitorState.DONE
    assert not config.report.report_path.exists()


@pytest.mark.asyncio
async def test_transport_error_means_disconnected(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    source = make_source(GOOD, DeviceError("adb shell b2g-info timed out"))
    monitor = make_monitor(config, source, 5)

    with pytest.raises(DeviceDisconnected):
        await monitor.run()

    assert not config.report.report_path.exists()


@pytest.mark.asyncio
async def test_elevation_failure_is_fatal(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    source = make_source(root_required_blob())
    source.elevate.side_effect = ElevationFailed("adbd cannot run as root in production builds")
    monitor = make_monitor(config, source, 1)

    with pytest.raises(SessionAborted):
        await monitor.run()

    assert monitor.state is MonitorState.DONE
    assert not config.report.report_path.exists()


@pytest.mark.asyncio
async def test_root_required_twice_is_fatal(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    source = make_source(root_required_blob(), root_required_blob())
    monitor = make_monitor(config, source, 1)

    with pytest.raises(SessionAborted):
        await monitor.run()

    source.elevate.assert_awaited_once()
    assert not config.report.report_path.exists()


@pytest.mark.asyncio
async def test_report_write_failure_is_fatal(tmp_path):
    config = make_config(tmp_path, apps=["App1"])
    monitor = make_monitor(config, make_source(GOOD), 1)

    with patch(
        "b2g_monitor.monitor.write_report",
        side_effect=PermissionError(13, "Permission denied"),
    ) as write:
        with pytest.raises(SessionAborted, match="Could not write report"):
            await monitor.run()
        assert monitor._finish() is None

    assert write.call_count == 1
    assert monitor.state is MonitorState.DONE
