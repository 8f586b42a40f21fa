from __future__ import annotations

import threading
import time

import pytest

from data_sources.base_api import RateLimiter


pytestmark = pytest.mark.unit


class FakeTime:
    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, dt: float):
        # record and advance
        self.sleeps.append(dt)
        self.now += dt


@pytest.fixture
def fake_time(monkeypatch):
    ft = FakeTime(start=100.0)
    monkeypatch.setattr("data_sources.base_api.time.time", ft.time)
    monkeypatch.setattr("data_sources.base_api.time.sleep", ft.sleep)
    return ft


def test_first_acquire_does_not_wait(fake_time):
    rl = RateLimiter(min_interval=0.1)

    with rl:
        pass

    assert fake_time.sleeps == []
    assert rl.last_release_time == pytest.approx(100.0)


def test_acquire_right_after_release_waits_full_cooldown(fake_time):
    rl = RateLimiter(min_interval=0.1)

    with rl:
        pass
    with rl:
        pass

    assert fake_time.sleeps == [pytest.approx(0.1)]


def test_cooldown_counts_from_release_not_from_acquire(fake_time):
    rl = RateLimiter(min_interval=0.1)

    rl.acquire()
    fake_time.now += 5.0  # a slow response
    rl.release()
    fake_time.now += 0.04

    rl.acquire()
    rl.release()

    # Only the remainder of the cooldown after the slow call's release
    assert fake_time.sleeps == [pytest.approx(0.06)]


def test_no_wait_when_cooldown_already_passed(fake_time):
    rl = RateLimiter(min_interval=0.1)
    rl.last_release_time = fake_time.time() - 10.0

    rl.acquire()
    rl.release()

    assert fake_time.sleeps == []


def test_stats_track_admissions_and_wait(fake_time):
    rl = RateLimiter(min_interval=0.25)

    for _ in range(3):
        with rl:
            pass

    stats = rl.stats()
    assert stats["admitted"] == 3
    assert stats["total_wait"] == pytest.approx(0.5)
    assert stats["min_interval"] == 0.25


def test_release_happens_when_body_raises(fake_time):
    rl = RateLimiter(min_interval=0.1)

    with pytest.raises(RuntimeError):
        with rl:
            raise RuntimeError("boom")

    # Slot is free again: a second acquire must not deadlock
    acquired = threading.Event()

    def grab():
        with rl:
            acquired.set()

    t = threading.Thread(target=grab, daemon=True)
    t.start()
    t.join(timeout=2)
    assert acquired.is_set()


def test_only_one_holder_at_a_time():
    rl = RateLimiter(min_interval=0.01)
    active = 0
    max_active = 0
    guard = threading.Lock()

    def call():
        nonlocal active, max_active
        with rl:
            with guard:
                active += 1
                max_active = max(max_active, active)
            time.sleep(0.005)
            with guard:
                active -= 1

    threads = [threading.Thread(target=call) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert max_active == 1
    assert rl.stats()["admitted"] == 8


def test_consecutive_calls_are_spaced():
    rl = RateLimiter(min_interval=0.05)
    starts: list[float] = []

    def call():
        with rl:
            starts.append(time.monotonic())

    threads = [threading.Thread(target=call) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    starts.sort()
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert len(gaps) == 3
    # Allow a little scheduler slack
    assert all(gap >= 0.04 for gap in gaps)
