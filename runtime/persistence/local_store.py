import json
import logging
from pathlib import Path
from typing import Union

from models.token_record import DecodedToken, TokenRecord
from models.upload_task import ArtifactKind
from runtime.artifacts import ArtifactKey, LocalArtifactIndex, write_atomic

logger = logging.getLogger(__name__)


class LocalStore:
    """
    Durable, resumable home for decoded tokens.

    images/{id}.svg is the resumability marker: when it exists the token is
    treated as materialized and write() does nothing. The image is written
    before the metadata, both atomically, so a metadata file never points at
    a missing image.
    """

    def __init__(self, root: Union[str, Path], index: LocalArtifactIndex = None):
        self.index = index or LocalArtifactIndex(root)
        self.index.ensure_dirs(ArtifactKind.SVG, ArtifactKind.METADATA)

    @property
    def root(self) -> Path:
        return self.index.root

    def is_materialized(self, token_id: int) -> bool:
        return self.index.exists(ArtifactKey(token_id, ArtifactKind.SVG))

    def write(self, decoded: DecodedToken) -> bool:
        """Persist image + metadata. Returns False if already materialized."""
        record = decoded.record
        if self.is_materialized(record.token_id):
            return False

        write_atomic(self.index.path_for(ArtifactKey(record.token_id, ArtifactKind.SVG)), decoded.svg)
        write_atomic(
            self.index.path_for(ArtifactKey(record.token_id, ArtifactKind.METADATA)),
            json.dumps(record.to_metadata(), indent=2, ensure_ascii=False),
        )
        logger.debug("wrote token %d (%s)", record.token_id, record.name)
        return True

    def read_record(self, token_id: int) -> TokenRecord:
        path = self.index.path_for(ArtifactKey(token_id, ArtifactKind.METADATA))
        return TokenRecord.from_metadata(token_id, json.loads(path.read_text(encoding="utf-8")))

    def read_svg(self, token_id: int) -> str:
        return self.index.path_for(ArtifactKey(token_id, ArtifactKind.SVG)).read_text(encoding="utf-8")

    def metadata_ids(self):
        return self.index.token_ids(ArtifactKind.METADATA)
