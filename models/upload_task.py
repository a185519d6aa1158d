# models/upload_task.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ArtifactKind(str, Enum):
    """Artifact kinds keyed alongside token_id."""

    SVG = "svg"
    METADATA = "metadata"
    THUMB = "thumb"
    OG = "og"


class UploadState(str, Enum):
    """
    Upload task lifecycle.

    PENDING -> ATTEMPTING -> SUCCEEDED | ATTEMPTING (retry) | FAILED
    SUCCEEDED and FAILED are terminal.
    """

    PENDING = "PENDING"
    ATTEMPTING = "ATTEMPTING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass
class UploadTask:
    token_id: int
    kind: ArtifactKind
    local_path: str
    remote_key: str
    content_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "kind": self.kind.value,
            "local_path": self.local_path,
            "remote_key": self.remote_key,
            "content_type": self.content_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadTask":
        return cls(
            token_id=int(data["token_id"]),
            kind=ArtifactKind(data["kind"]),
            local_path=data["local_path"],
            remote_key=data["remote_key"],
            content_type=data["content_type"],
        )


@dataclass
class UploadResult:
    task: UploadTask
    state: UploadState = UploadState.PENDING
    attempts: int = 0
    skipped: bool = False          # remote copy already current, nothing written
    error: Optional[str] = None

    @property
    def token_id(self) -> int:
        return self.task.token_id

    @property
    def kind(self) -> ArtifactKind:
        return self.task.kind

    @property
    def success(self) -> bool:
        return self.state == UploadState.SUCCEEDED

    def to_ledger_entry(self) -> Dict[str, Any]:
        entry = self.task.to_dict()
        entry.update({"success": self.success, "attempts": self.attempts, "error": self.error})
        return entry
