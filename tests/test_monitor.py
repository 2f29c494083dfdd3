import asyncio
from typing import Dict

from roomrecorder.config import MonitorConfig, RecordingConfig
from roomrecorder.discovery import StreamInfo
from roomrecorder.errors import (
    BroadcasterOffline,
    CloudflareBlocked,
    PrivateStream,
    RecorderError,
)
from roomrecorder.monitor import RoomCheckState, RoomMonitor, RoomStatus, backoff_delay
from roomrecorder.recorder import RecordingStats


class Rooms:
    """Scripted discovery: per-room outcome, either an exception or 'online'."""

    def __init__(self, **outcomes):
        self.outcomes: Dict[str, object] = dict(outcomes)
        self.checked = []

    async def discover(self, client, room, resolution, framerate):
        self.checked.append(room)
        outcome = self.outcomes.get(room, BroadcasterOffline(room))
        if isinstance(outcome, BaseException):
            raise outcome
        return StreamInfo(room=room, playable_url=f"https://edge.example.test/{room}.m3u8",
                          resolution=resolution, framerate=framerate)


class Recordings:
    """Records until told to stop, then reports one segment."""

    def __init__(self, fail_with=None):
        self.events: Dict[str, asyncio.Event] = {}
        self.fail_with = fail_with

    async def record(self, client, stream_info, config, cancel_event):
        self.events[stream_info.room] = cancel_event
        if self.fail_with is not None:
            raise self.fail_with
        await cancel_event.wait()
        return RecordingStats(segments_downloaded=1, bytes_written=10, files_created=1)


def make_monitor(rooms, scripted, recordings=None, clock=None, notifier=None, interval=60):
    recordings = recordings or Recordings()
    kwargs = {}
    if clock is not None:
        kwargs['clock'] = clock
    return RoomMonitor(
        client=None,
        rooms=rooms,
        monitor_config=MonitorConfig(check_interval_seconds=interval, rooms=rooms),
        recording_config=RecordingConfig(),
        notifier=notifier,
        discover=scripted.discover,
        record=recordings.record,
        **kwargs
    )


def test_backoff_delay_is_capped():
    assert backoff_delay(60, 1) == 120
    assert backoff_delay(60, 3) == 480
    assert backoff_delay(60, 6) == 60 * 64
    assert backoff_delay(60, 20) == 60 * 64


def test_check_state_resets_on_new_kind():
    state = RoomCheckState()
    assert state.record_error("offline", 60, 0) is True
    assert state.record_error("offline", 60, 0) is False
    assert state.consecutive_same_error == 2
    assert state.record_error("private", 60, 0) is True
    assert state.consecutive_same_error == 1
    assert state.current_delay == 120


def test_repeated_offline_backs_off_exponentially(fake_clock):
    scripted = Rooms()
    monitor = make_monitor(["alice", "bob", "carol"], scripted, clock=fake_clock)

    async def scenario():
        delays = []
        for _ in range(3):
            await monitor.run_cycle()
            state = monitor.check_state("alice")
            delays.append(state.current_delay)
            fake_clock.advance(state.current_delay)

        scripted.outcomes["alice"] = PrivateStream()
        await monitor.run_cycle()
        state = monitor.check_state("alice")
        delays.append(state.current_delay)
        assert state.last_error_kind == "private"

        del scripted.outcomes["alice"]
        fake_clock.advance(state.current_delay)
        await monitor.run_cycle()
        delays.append(monitor.check_state("alice").current_delay)
        return delays

    assert asyncio.run(scenario()) == [120, 240, 480, 120, 120]
    state = monitor.check_state("alice")
    assert state.last_error_kind == "offline"
    assert state.consecutive_same_error == 1
    assert not monitor.cookie_dead


def test_room_is_not_checked_before_it_is_due(fake_clock):
    scripted = Rooms()
    monitor = make_monitor(["alice"], scripted, clock=fake_clock)

    async def scenario():
        await monitor.run_cycle()
        fake_clock.advance(119)
        skipped = await monitor.run_cycle()
        fake_clock.advance(1)
        due = await monitor.run_cycle()
        return skipped, due

    skipped, due = asyncio.run(scenario())

    assert skipped.checked == 0
    assert due.checked == 1
    assert scripted.checked == ["alice", "alice"]
    assert monitor.get_status("alice") is RoomStatus.OFFLINE


def test_cookie_death_at_half_of_checked_rooms(fake_clock, fake_notifier):
    scripted = Rooms(a=PrivateStream(), b=CloudflareBlocked())
    monitor = make_monitor(["a", "b", "c", "d"], scripted, clock=fake_clock, notifier=fake_notifier)

    async def scenario():
        report = await monitor.run_cycle()
        fake_clock.advance(10_000)
        await monitor.run_cycle()
        return report

    report = asyncio.run(scenario())

    assert report.checked == 4
    assert report.auth_failures == 2
    assert monitor.cookie_dead
    assert all(status is RoomStatus.COOKIE_DEAD for status in monitor.statuses().values())
    assert len(fake_notifier.messages) == 1
    assert "Cookie death" in fake_notifier.messages[0]


def test_no_cookie_death_below_half(fake_clock, fake_notifier):
    scripted = Rooms(a=PrivateStream(), b=PrivateStream())
    monitor = make_monitor(["a", "b", "c", "d", "e"], scripted, clock=fake_clock, notifier=fake_notifier)

    asyncio.run(monitor.run_cycle())

    assert not monitor.cookie_dead
    assert fake_notifier.messages == []
    assert monitor.get_status("a") is RoomStatus.PRIVATE
    assert monitor.get_status("c") is RoomStatus.OFFLINE


def test_cookie_recovery_resets_backoff(fake_clock, fake_notifier):
    scripted = Rooms(a=PrivateStream(), b=PrivateStream())
    monitor = make_monitor(["a", "b", "c", "d"], scripted, clock=fake_clock, notifier=fake_notifier)

    async def scenario():
        await monitor.run_cycle()
        assert monitor.cookie_dead

        scripted.outcomes.clear()
        fake_clock.advance(10_000)
        await monitor.run_cycle()

    asyncio.run(scenario())

    assert not monitor.cookie_dead
    assert len(fake_notifier.messages) == 2
    assert "recovered" in fake_notifier.messages[1]
    for room in "abcd":
        state = monitor.check_state(room)
        assert state.consecutive_same_error == 0
        assert state.is_due(fake_clock())


def test_cycle_without_checks_keeps_cookie_state():
    monitor = make_monitor(["a"], Rooms())
    monitor.evaluate_credential_health(2, 1)
    assert monitor.cookie_dead
    monitor.evaluate_credential_health(0, 0)
    assert monitor.cookie_dead
    monitor.evaluate_credential_health(3, 1)
    assert monitor.cookie_dead
    monitor.evaluate_credential_health(3, 0)
    assert not monitor.cookie_dead


def test_online_room_starts_recording_and_is_reaped(fake_clock):
    scripted = Rooms(alice="online")
    recordings = Recordings()
    monitor = make_monitor(["alice", "bob"], scripted, recordings=recordings, clock=fake_clock)

    async def scenario():
        first = await monitor.run_cycle()
        assert monitor.is_recording("alice")
        assert monitor.get_status("alice") is RoomStatus.RECORDING

        fake_clock.advance(10_000)
        second = await monitor.run_cycle()

        assert monitor.stop_room("alice")
        assert not monitor.stop_room("bob")
        await asyncio.sleep(0.01)
        third = await monitor.run_cycle()
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert first.started == ["alice"]
    assert second.checked == 1  # only bob, alice is recording
    assert third.finished == ["alice"]
    assert recordings.events["alice"].is_set()
    assert monitor.active_rooms == []


def test_errors_in_one_room_do_not_affect_others(fake_clock):
    scripted = Rooms(alice=RuntimeError("boom"), bob="online")
    recordings = Recordings(fail_with=RecorderError("disk gone"))
    monitor = make_monitor(["alice", "bob"], scripted, recordings=recordings, clock=fake_clock)

    async def scenario():
        report = await monitor.run_cycle()
        await asyncio.sleep(0.01)
        later = await monitor.run_cycle()
        return report, later

    report, later = asyncio.run(scenario())

    assert report.started == ["bob"]
    assert monitor.check_state("alice").last_error_kind == "RuntimeError"
    assert later.finished == ["bob"]
    assert not monitor.is_recording("bob")


def test_run_drains_recordings_on_cancel():
    scripted = Rooms(alice="online")
    recordings = Recordings()
    monitor = make_monitor(["alice"], scripted, recordings=recordings, interval=1)

    async def scenario():
        cancel_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel_event.set)
        await asyncio.wait_for(monitor.run(cancel_event), timeout=5)

    asyncio.run(scenario())

    assert recordings.events["alice"].is_set()
    assert monitor.active_rooms == []
    assert monitor.get_status("alice") is RoomStatus.UNKNOWN


def test_shutdown_returns_final_stats():
    scripted = Rooms(alice="online")
    monitor = make_monitor(["alice"], scripted)

    async def scenario():
        await monitor.run_cycle()
        return await monitor.shutdown()

    results = asyncio.run(scenario())

    assert list(results) == ["alice"]
    assert results["alice"].segments_downloaded == 1

