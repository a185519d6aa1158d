import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class StageTally:
    """Final {processed, skipped, failed} for one stage run."""

    stage: str
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Tuple[Optional[int], str]] = field(default_factory=list)

    def record_failure(self, token_id: Optional[int], error: BaseException) -> None:
        self.failed += 1
        self.errors.append((token_id, f"{type(error).__name__}: {error}"))

    @property
    def clean(self) -> bool:
        return self.failed == 0

    def summary_line(self) -> str:
        return (
            f"{self.stage}: processed={self.processed} "
            f"skipped={self.skipped} failed={self.failed}"
        )


class ProgressTracker:
    """Counts, rate and ETA for a stage, updated between windows."""

    def __init__(self, tally: StageTally, total: int, clock: Callable[[], float] = time.monotonic):
        self.tally = tally
        self.total = total
        self._clock = clock
        self._started = clock()

    @property
    def done(self) -> int:
        return self.tally.processed + self.tally.failed

    def rate(self) -> float:
        elapsed = self._clock() - self._started
        return self.done / elapsed if elapsed > 0 else 0.0

    def eta_sec(self) -> Optional[float]:
        rate = self.rate()
        if rate <= 0:
            return None
        return max(self.total - self.done, 0) / rate

    def elapsed_sec(self) -> float:
        return self._clock() - self._started

    def report(self) -> str:
        eta = self.eta_sec()
        eta_txt = f"~{eta / 60:.1f} min remaining" if eta is not None else "eta unknown"
        pct = (self.done / self.total * 100) if self.total else 100.0
        line = (
            f"{self.tally.stage}: {self.done}/{self.total} ({pct:.1f}%) | "
            f"{self.tally.processed} ok, {self.tally.failed} failed, "
            f"{self.tally.skipped} skipped | {self.rate():.1f}/sec | {eta_txt}"
        )
        logger.info(line)
        return line


def banner(title: str, *lines: str) -> None:
    print("═" * 43)
    print(f"  {title}")
    for line in lines:
        print(f"  {line}")
    print("═" * 43)


def print_tallies(tallies) -> bool:
    """Print the final per-stage tally; True when every stage is clean."""
    print()
    banner("Summary")
    for tally in tallies:
        print(tally.summary_line())
        for token_id, error in tally.errors[:10]:
            label = f"token {token_id}" if token_id is not None else "stage"
            print(f"  ✗ {label}: {error}")
        if len(tally.errors) > 10:
            print(f"  ... {len(tally.errors) - 10} more")
    return all(t.clean for t in tallies)
