from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class Region:
    width: int
    height: int


class RenderSurface(Protocol):
    """
    An off-screen rendering context.

    load() replaces the current document, settle() lets external references
    resolve and waits the settle delay, capture() rasterizes the document
    into a PNG of the given region size.
    """

    def load(self, markup: str) -> None:
        ...

    def settle(self, duration_sec: float) -> None:
        ...

    def capture(self, region: Region) -> bytes:
        ...

    def close(self) -> None:
        ...
