"""
Upload Retry Policy - bounded attempts with linear-growth backoff.

Decides, after a failed attempt, whether a transfer is retried (and after
how long) or given up on and recorded in the failure ledger.
"""

from typing import Optional


class RetryDecision:
    def __init__(self, action, reason=None, delay_sec=0.0):
        self.action = action
        self.reason = reason
        self.delay_sec = delay_sec

    @property
    def retry(self) -> bool:
        return self.action == "RETRY"


class RetryPolicy:
    def __init__(self, config=None):
        cfg = config or {}
        self.max_attempts = max(int(cfg.get("max_attempts", 3)), 1)
        self.backoff_ms = max(int(cfg.get("backoff_ms", 1000)), 0)

    def backoff_sec(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt: attempt * backoff."""
        return attempt * self.backoff_ms / 1000.0

    def decide(self, attempt: int, error: Optional[str] = None) -> RetryDecision:
        if attempt < self.max_attempts:
            return RetryDecision(
                "RETRY",
                reason=f"Retry {attempt + 1}/{self.max_attempts}: {error}",
                delay_sec=self.backoff_sec(attempt),
            )
        return RetryDecision(
            "ABORT",
            reason=f"Max attempts ({self.max_attempts}) reached: {error}",
        )
