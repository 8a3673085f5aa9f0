import asyncio

import pytest

from smartcart.camera import DeviceUnavailable, NotStreaming
from smartcart.detect import AnalysisError, AnalysisMode, NetworkError
from smartcart.detection import MessageResult
from smartcart.scanner import FailureSampler, ScanLoop, ScanMode, ScanState

from conftest import FakeAnalysisClient, items_result, make_capture


def titles(notifier):
    return [n.title for n in notifier.recent(50)]


def test_failure_sampler_surfaces_runs_and_every_tenth():
    sampler = FailureSampler(every=10, max_run=5)

    surfaced = [sampler.record_failure() for _ in range(10)]
    assert surfaced == [False] * 4 + [True] + [False] * 4 + [True]

    sampler.record_success()
    assert sampler.run == 0
    assert sampler.record_failure() is False


def test_dropped_tick_while_analyzing(capture, detections, notifier, settings):
    async def run():
        gate = asyncio.Event()
        client = FakeAnalysisClient([items_result('Apple'), items_result('Pear')], gate=gate)
        loop = ScanLoop(capture, client, detections, notifier, settings)
        await loop.start(ScanMode.REALTIME)

        # Three ticks: first runs, second is dropped, third runs after the first resolves
        assert loop.tick() is True
        assert loop.state is ScanState.ANALYZING
        assert loop.tick() is False

        await asyncio.sleep(0)
        gate.set()
        await loop._cycle_task
        assert loop.state is ScanState.STREAMING

        assert loop.tick() is True
        await loop._cycle_task
        names = [d.name for d in detections.current()]
        await loop.stop()
        return loop, client, names

    loop, client, names = asyncio.run(run())

    assert len(client.calls) == 2
    assert client.max_active == 1
    assert loop.dropped_ticks == 1
    assert names == ['Pear']


def test_timer_driven_scans_never_overlap(capture, detections, notifier, settings):
    async def run():
        client = FakeAnalysisClient([items_result('Apple')] * 50)
        loop = ScanLoop(capture, client, detections, notifier, settings.with_overrides(scan_interval=0.01))
        await loop.start(ScanMode.REALTIME)
        await asyncio.sleep(0.3)
        await loop.stop()

        # No cycle starts once the scanner is stopped
        sequence = loop.sequence
        await asyncio.sleep(0.05)
        return loop, client, sequence

    loop, client, sequence = asyncio.run(run())

    assert len(client.calls) >= 2
    assert client.max_active == 1
    assert loop.sequence == sequence
    assert all(mode is AnalysisMode.REALTIME for _, mode in client.calls)


def test_latest_result_replaces_previous(capture, detections, notifier, settings):
    async def run():
        client = FakeAnalysisClient([items_result('Bread Loaf', 'Milk'), items_result('Chocolate Bar')])
        loop = ScanLoop(capture, client, detections, notifier, settings)
        await loop.start(ScanMode.REALTIME)
        for _ in range(2):
            loop.tick()
            await loop._cycle_task
        return [d.name for d in detections.current()], [d.name for d in detections.previous()]

    current, previous = asyncio.run(run())

    assert current == ['Chocolate Bar']
    assert previous == ['Bread Loaf', 'Milk']


def test_stop_while_analyzing_discards_result(capture, detections, notifier, settings):
    async def run():
        gate = asyncio.Event()
        client = FakeAnalysisClient([items_result('Ghost')], gate=gate)
        loop = ScanLoop(capture, client, detections, notifier, settings)
        await loop.start(ScanMode.REALTIME)

        loop.tick()
        await asyncio.sleep(0)
        task = loop._cycle_task

        assert await loop.stop() is True
        assert loop.state is ScanState.IDLE
        version = detections.version

        gate.set()
        result = await task
        return result, version

    result, version = asyncio.run(run())

    assert result is None
    assert detections.current() == []
    assert detections.version == version
    assert capture.handles[0].released
    assert 'Scanner Stopped' in titles(notifier)


def test_stop_when_idle_is_noop(capture, detections, notifier, settings):
    loop = ScanLoop(capture, FakeAnalysisClient(), detections, notifier, settings)
    assert asyncio.run(loop.stop()) is False


def test_sampled_failure_notification(capture, detections, notifier, settings):
    async def run():
        client = FakeAnalysisClient([NetworkError('connection reset')] * 5)
        loop = ScanLoop(capture, client, detections, notifier, settings)
        await loop.start(ScanMode.REALTIME)
        for _ in range(5):
            loop.tick()
            await loop._cycle_task
        state = loop.state
        await loop.stop()
        return loop, state

    loop, state = asyncio.run(run())

    scan_errors = [n for n in notifier.recent(50) if n.title == 'Scan Error']
    assert len(scan_errors) == 1
    assert '5 in a row' in scan_errors[0].description
    assert loop.failures == 5
    assert state is ScanState.STREAMING


def test_camera_failure_stops_loop(detections, notifier, settings):
    capture = make_capture(frames_ok=False)

    async def run():
        loop = ScanLoop(capture, FakeAnalysisClient(), detections, notifier, settings)
        await loop.start(ScanMode.REALTIME)
        loop.tick()
        await loop._cycle_task
        return loop

    loop = asyncio.run(run())

    assert loop.state is ScanState.IDLE
    assert capture.handles[0].released
    assert 'Camera Error' in titles(notifier)
    assert 'Scanner Stopped' not in titles(notifier)


def test_start_failure_notifies_and_raises(detections, notifier, settings):
    capture = make_capture(opened=False)
    loop = ScanLoop(capture, FakeAnalysisClient(), detections, notifier, settings)

    with pytest.raises(DeviceUnavailable):
        asyncio.run(loop.start(ScanMode.REALTIME))

    assert loop.state is ScanState.IDLE
    assert notifier.recent()[-1].description == 'Failed to access camera. Please check permissions.'


def test_manual_scan_returns_result(capture, detections, notifier, settings):
    async def run():
        client = FakeAnalysisClient([items_result('Coca Cola 500ml')])
        loop = ScanLoop(capture, client, detections, notifier, settings)
        await loop.start(ScanMode.SINGLE)
        result = await loop.scan_now()
        return client, result

    client, result = asyncio.run(run())

    assert [d.name for d in result.items] == ['Coca Cola 500ml']
    assert client.calls[0][1] is AnalysisMode.SINGLE_SHOT
    assert client.calls[0][0].quality == settings.single_shot_quality
    assert titles(notifier)[-1] == 'Analysis Complete'


def test_manual_scan_without_items_notifies(capture, detections, notifier, settings):
    async def run():
        client = FakeAnalysisClient([MessageResult(message='Only a table is visible')])
        loop = ScanLoop(capture, client, detections, notifier, settings)
        await loop.start(ScanMode.SINGLE)
        return await loop.scan_now()

    result = asyncio.run(run())

    assert result.items == []
    last = notifier.recent()[-1]
    assert last.title == 'No Items Detected'
    assert last.description == 'Only a table is visible'


def test_manual_scan_requires_camera(capture, detections, notifier, settings):
    loop = ScanLoop(capture, FakeAnalysisClient(), detections, notifier, settings)

    with pytest.raises(NotStreaming):
        asyncio.run(loop.scan_now())


def test_manual_scan_while_analyzing_is_rejected(capture, detections, notifier, settings):
    async def run():
        gate = asyncio.Event()
        client = FakeAnalysisClient([items_result('Apple')], gate=gate)
        loop = ScanLoop(capture, client, detections, notifier, settings)
        await loop.start(ScanMode.SINGLE)

        first = asyncio.create_task(loop.scan_now())
        await asyncio.sleep(0)
        second = await loop.scan_now()
        gate.set()
        return await first, second

    first, second = asyncio.run(run())

    assert second is None
    assert [d.name for d in first.items] == ['Apple']
    assert 'Scan In Progress' in titles(notifier)


def test_manual_scan_timeout_reports_error(capture, detections, notifier, settings):
    async def run():
        client = FakeAnalysisClient(gate=asyncio.Event())
        loop = ScanLoop(capture, client, detections, notifier, settings.with_overrides(analysis_timeout=0.05))
        await loop.start(ScanMode.SINGLE)
        result = await loop.scan_now()
        return loop, result

    loop, result = asyncio.run(run())

    assert result is None
    assert loop.state is ScanState.STREAMING
    assert titles(notifier)[-1] == 'Analysis Error'
    assert 'timed out' in loop.last_error


def test_restart_in_other_mode_switches_without_reopening(capture, detections, notifier, settings):
    async def run():
        loop = ScanLoop(capture, FakeAnalysisClient(), detections, notifier, settings)
        first = await loop.start(ScanMode.SINGLE)
        second = await loop.start(ScanMode.REALTIME)
        timer_armed = loop._timer_task is not None
        await loop.stop()
        return first, second, timer_armed, loop

    first, second, timer_armed, loop = asyncio.run(run())

    assert first is second
    assert timer_armed
    assert len(capture.handles) == 1


def test_status_reports_counters(capture, detections, notifier, settings):
    async def run():
        client = FakeAnalysisClient([items_result('Apple', 'Pear')])
        loop = ScanLoop(capture, client, detections, notifier, settings)
        await loop.start(ScanMode.REALTIME)
        loop.tick()
        await loop._cycle_task
        return loop.status()

    status = asyncio.run(run())

    assert status['state'] == 'streaming'
    assert status['mode'] == 'realtime'
    assert status['scans'] == 1
    assert status['detected'] == 2


def test_analysis_error_is_an_analysis_failure():
    assert issubclass(NetworkError, AnalysisError)
