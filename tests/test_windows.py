import threading
import time

import pytest

from runtime.progress import ProgressTracker, StageTally
from runtime.windows import run_windows


class InFlightCounter:
    def __init__(self):
        self._lock = threading.Lock()
        self.current = 0
        self.peak = 0

    def __enter__(self):
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)

    def __exit__(self, *exc):
        with self._lock:
            self.current -= 1


def test_windows_are_bounded_and_ordered():
    counter = InFlightCounter()

    def work(item, slot):
        with counter:
            time.sleep(0.01)
        return item * 2

    windows = list(run_windows(range(25), 10, work))

    assert [len(w) for w in windows] == [10, 10, 5]
    assert [s.value for w in windows for s in w] == [i * 2 for i in range(25)]
    assert counter.peak <= 10


def test_next_window_waits_for_previous():
    started = []

    def work(item, slot):
        started.append(item)
        if item == 0:
            time.sleep(0.05)
        return item

    gen = run_windows([0, 1, 2, 3], 2, work)
    first = next(gen)
    assert [s.item for s in first] == [0, 1]
    assert sorted(started) == [0, 1]
    list(gen)


def test_slots_are_window_positions():
    slots = []
    lock = threading.Lock()

    def work(item, slot):
        with lock:
            slots.append((item, slot))

    list(run_windows(range(5), 2, work))
    assert sorted(slots) == [(0, 0), (1, 1), (2, 0), (3, 1), (4, 0)]


def test_errors_settle_without_cancelling_siblings():
    def work(item, slot):
        if item == 1:
            raise ValueError("bad item")
        return item

    (window,) = list(run_windows([0, 1, 2], 3, work))
    assert [s.ok for s in window] == [True, False, True]
    assert isinstance(window[1].error, ValueError)


def test_delay_only_between_windows():
    sleeps = []
    list(run_windows(range(5), 2, lambda item, slot: item, delay_sec=0.5, sleep=sleeps.append))
    assert sleeps == [0.5, 0.5]


def test_invalid_window_size():
    with pytest.raises(ValueError):
        list(run_windows([1], 0, lambda item, slot: item))


def test_progress_rate_and_eta():
    now = [100.0]
    tally = StageTally(stage="thumbnails")
    progress = ProgressTracker(tally, total=10, clock=lambda: now[0])

    tally.processed = 4
    now[0] = 102.0

    assert progress.rate() == pytest.approx(2.0)
    assert progress.eta_sec() == pytest.approx(3.0)
    line = progress.report()
    assert "4/10" in line
    assert "40.0%" in line
