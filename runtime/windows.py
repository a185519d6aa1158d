"""
Bounded batch windows.

Every concurrent stage (chain reads, renders, uploads) goes through
run_windows(): a fixed-size window of items is submitted together, the
window is allowed to fully settle, and only then does the next window start.
Results come back as Settled values in item order, so callers fold counters
single-threaded between windows.
"""

import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Sequence


@dataclass
class Settled:
    item: Any
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_windows(
    items: Sequence[Any],
    window_size: int,
    fn: Callable[[Any, int], Any],
    delay_sec: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[List[Settled]]:
    """
    Yield one list of Settled per window.

    fn(item, slot) runs on a worker thread; slot is the item's position in
    its window (0..window_size-1), which lets callers pin a reusable
    resource per slot. An exception raised by fn is captured on its Settled
    and never cancels siblings. delay_sec is slept between windows, not
    after the last one.
    """
    if window_size < 1:
        raise ValueError("window_size must be >= 1")

    items = list(items)
    with ThreadPoolExecutor(max_workers=window_size) as pool:
        for start in range(0, len(items), window_size):
            window = items[start:start + window_size]
            futures = [pool.submit(fn, item, slot) for slot, item in enumerate(window)]
            wait(futures)

            settled = []
            for item, future in zip(window, futures):
                exc = future.exception()
                if exc is not None:
                    settled.append(Settled(item=item, error=exc))
                else:
                    settled.append(Settled(item=item, value=future.result()))
            yield settled

            if delay_sec > 0 and start + window_size < len(items):
                sleep(delay_sec)
