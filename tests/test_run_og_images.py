"""
Social card uploads share the failure ledger with the other blob kinds and
can be replayed on their own.
"""

from unittest.mock import MagicMock

import pytest

import run_og_images
from helpers import FakeBlobStore
from models.upload_task import ArtifactKind, UploadResult, UploadState
from runtime.artifacts import ArtifactKey, LocalArtifactIndex
from runtime.persistence.failure_ledger import LEDGER_NAME, FailureLedger
from runtime.publisher import scan_upload_tasks


@pytest.fixture
def corpus(tmp_path):
    index = LocalArtifactIndex(tmp_path / "data")
    index.ensure_dirs(ArtifactKind.SVG, ArtifactKind.THUMB, ArtifactKind.OG)
    for token_id in range(3):
        index.path_for(ArtifactKey(token_id, ArtifactKind.SVG)).write_text("<svg/>")
        index.path_for(ArtifactKey(token_id, ArtifactKind.THUMB)).write_bytes(b"RIFF" + bytes([token_id]))
        index.path_for(ArtifactKey(token_id, ArtifactKind.OG)).write_bytes(b"\x89PNG" + bytes([token_id]))
    return index


@pytest.fixture
def bucket(monkeypatch):
    store = FakeBlobStore()
    monkeypatch.setattr(run_og_images, "BlobStore", MagicMock(from_env=MagicMock(return_value=store)))
    monkeypatch.setenv("UPLOAD_MAX_RETRIES", "1")
    return store


def test_upload_failures_land_in_shared_ledger(corpus, bucket):
    bucket.failing = {"og/1.png"}

    assert run_og_images.main(["--upload-only", "--data-dir", str(corpus.root)]) == 0

    ledger = FailureLedger(corpus.root / LEDGER_NAME)
    assert [t.remote_key for t in ledger.load()] == ["og/1.png"]


def test_retry_failed_replays_only_cards(corpus, bucket):
    tasks = {t.remote_key: t for t in scan_upload_tasks(corpus)}
    ledger = FailureLedger(corpus.root / LEDGER_NAME)
    ledger.save([
        UploadResult(task=tasks["thumb/2.webp"], state=UploadState.FAILED, attempts=3, error="503"),
        UploadResult(task=tasks["og/1.png"], state=UploadState.FAILED, attempts=3, error="503"),
    ])

    assert run_og_images.main(["--retry-failed", "--data-dir", str(corpus.root)]) == 0

    assert bucket.puts == ["og/1.png"]
    assert [t.remote_key for t in ledger.load()] == ["thumb/2.webp"]


def test_limit_restricts_uploads(corpus, bucket):
    assert run_og_images.main(["--upload-only", "--limit", "2", "--data-dir", str(corpus.root)]) == 0
    assert sorted(bucket.objects) == ["og/0.png", "og/1.png"]
