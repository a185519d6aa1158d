from dataclasses import dataclass
from typing import Optional


@dataclass
class SinkResult:
    """Outcome of one remote operation (put, head or batch execute)."""

    ok: bool
    error: Optional[str] = None
    missing: bool = False               # head: object does not exist
    content_length: Optional[int] = None

    @classmethod
    def success(cls, content_length: Optional[int] = None) -> "SinkResult":
        return cls(ok=True, content_length=content_length)

    @classmethod
    def failure(cls, error) -> "SinkResult":
        return cls(ok=False, error=str(error))
