"""
Artifact keys and the exists() capability used for resumability.

A stage decides whether to skip work by asking an ArtifactIndex whether the
(token_id, kind) key is already materialized. The local implementation maps
keys onto the DATA_DIR layout; a manifest- or HEAD-backed index can replace
it without touching call sites.
"""

import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Protocol, Tuple, Union

from models.upload_task import ArtifactKind

# kind -> (subdirectory, extension)
LOCAL_LAYOUT: Dict[ArtifactKind, Tuple[str, str]] = {
    ArtifactKind.SVG: ("images", ".svg"),
    ArtifactKind.METADATA: ("metadata", ".json"),
    ArtifactKind.THUMB: ("thumbnails", ".webp"),
    ArtifactKind.OG: ("og-images", ".png"),
}

_NUMERIC_STEM = re.compile(r"^(\d+)$")


@dataclass(frozen=True)
class ArtifactKey:
    token_id: int
    kind: ArtifactKind


class ArtifactIndex(Protocol):
    def exists(self, key: ArtifactKey) -> bool:
        ...


class LocalArtifactIndex:
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def dir_for(self, kind: ArtifactKind) -> Path:
        return self.root / LOCAL_LAYOUT[kind][0]

    def path_for(self, key: ArtifactKey) -> Path:
        subdir, ext = LOCAL_LAYOUT[key.kind]
        return self.root / subdir / f"{key.token_id}{ext}"

    def exists(self, key: ArtifactKey) -> bool:
        path = self.path_for(key)
        # A zero-length file is never a finished artifact
        return path.is_file() and path.stat().st_size > 0

    def ensure_dirs(self, *kinds: ArtifactKind) -> None:
        for kind in kinds:
            self.dir_for(kind).mkdir(parents=True, exist_ok=True)

    def token_ids(self, kind: ArtifactKind) -> List[int]:
        """Ids with a materialized artifact of this kind, ascending."""
        directory = self.dir_for(kind)
        if not directory.is_dir():
            return []
        ext = LOCAL_LAYOUT[kind][1]
        ids = []
        for entry in directory.iterdir():
            if entry.suffix != ext:
                continue
            match = _NUMERIC_STEM.match(entry.stem)
            if match and entry.stat().st_size > 0:
                ids.append(int(match.group(1)))
        return sorted(ids)


def write_atomic(path: Union[str, Path], data: Union[bytes, str]) -> Path:
    """
    Write to a temp file in the target directory, fsync, then rename over
    the destination. Readers see either nothing or the complete file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, str):
        data = data.encode("utf-8")

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return path
