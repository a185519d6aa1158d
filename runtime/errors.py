"""
Pipeline error taxonomy.

Item-level errors (Fetch/Decode/Render/Upload) stay inside the item that
raised them; the window runner settles them into values. SinkUnavailable
ends the current stage.
"""

from typing import Optional


class PipelineError(Exception):
    """Base for every error the pipeline raises on purpose."""


class ItemError(PipelineError):
    kind = "item"

    def __init__(self, token_id: Optional[int], cause):
        self.token_id = token_id
        self.cause = cause
        super().__init__(f"token {token_id}: {cause}")


class FetchError(ItemError):
    kind = "fetch"


class DecodeError(ItemError):
    kind = "decode"


class RenderError(ItemError):
    kind = "render"


class UploadError(ItemError):
    kind = "upload"


class SinkUnavailable(PipelineError):
    def __init__(self, sink: str, cause):
        self.sink = sink
        self.cause = cause
        super().__init__(f"{sink} unavailable: {cause}")


class StagePrecondition(PipelineError):
    """A stage cannot start (e.g. its source directory is missing)."""
