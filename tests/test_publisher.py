"""
Remote publisher tests: bounded upload windows, retry exhaustion, the
failure ledger and database sink independence.
"""

from unittest.mock import MagicMock

import pytest

from helpers import FakeBlobStore
from models.upload_task import ArtifactKind, UploadState, UploadTask
from runtime.artifacts import ArtifactKey, LocalArtifactIndex
from runtime.errors import SinkUnavailable
from runtime.persistence.failure_ledger import FailureLedger
from runtime.persistence.sink_result import SinkResult
from runtime.policies.retry_policy import RetryPolicy
from runtime.publisher import Publisher, publish_database, remote_key, scan_upload_tasks


@pytest.fixture
def corpus(tmp_path):
    """25 svgs, 25 thumbnails and 3 og cards on disk."""
    index = LocalArtifactIndex(tmp_path / "data")
    index.ensure_dirs(ArtifactKind.SVG, ArtifactKind.THUMB, ArtifactKind.OG)
    for token_id in range(25):
        index.path_for(ArtifactKey(token_id, ArtifactKind.SVG)).write_text(f"<svg id='{token_id}'/>")
        index.path_for(ArtifactKey(token_id, ArtifactKind.THUMB)).write_bytes(b"RIFF" + bytes([token_id]))
    for token_id in range(3):
        index.path_for(ArtifactKey(token_id, ArtifactKind.OG)).write_bytes(b"\x89PNG" + bytes([token_id]))
    return index


def make_publisher(store, tmp_path, max_attempts=3, sleeps=None):
    return Publisher(
        store,
        FailureLedger(tmp_path / "failed-uploads.json"),
        retry_policy=RetryPolicy({"max_attempts": max_attempts, "backoff_ms": 1000}),
        window_size=10,
        sleep=(sleeps.append if sleeps is not None else lambda _s: None),
    )


class TestScan:

    def test_remote_keys(self):
        assert remote_key(ArtifactKind.SVG, 7) == "7.svg"
        assert remote_key(ArtifactKind.THUMB, 7) == "thumb/7.webp"
        assert remote_key(ArtifactKind.OG, 7) == "og/7.png"

    def test_scan_kinds(self, corpus):
        tasks = scan_upload_tasks(corpus)
        assert len(tasks) == 25 + 25 + 3
        og = [t for t in tasks if t.kind == ArtifactKind.OG]
        assert [t.remote_key for t in og] == ["og/0.png", "og/1.png", "og/2.png"]
        assert og[0].content_type == "image/png"

    def test_scan_subset(self, corpus):
        tasks = scan_upload_tasks(corpus, kinds=(ArtifactKind.THUMB,))
        assert {t.content_type for t in tasks} == {"image/webp"}
        assert len(tasks) == 25


class TestBlobPublishing:

    def test_window_bounds_concurrency(self, corpus, tmp_path):
        store = FakeBlobStore()
        publisher = make_publisher(store, tmp_path)

        run = publisher.publish(corpus, kinds=(ArtifactKind.SVG,))

        assert run.tally.processed == 25
        assert store.peak <= 10
        assert store.checked == 1
        assert sorted(store.objects) == sorted(f"{i}.svg" for i in range(25))

    def test_retry_exhaustion_goes_to_ledger_once(self, corpus, tmp_path):
        store = FakeBlobStore(failing={"thumb/4.webp"})
        sleeps = []
        publisher = make_publisher(store, tmp_path, sleeps=sleeps)

        run = publisher.publish(corpus, kinds=(ArtifactKind.THUMB,))

        assert run.tally.processed == 24
        assert run.tally.failed == 1
        assert store.puts.count("thumb/4.webp") == 3
        assert sleeps == [1.0, 2.0]

        (failure,) = run.failures
        assert failure.state == UploadState.FAILED
        assert failure.attempts == 3
        assert not failure.success

        ledger = publisher.ledger.load()
        assert [t.remote_key for t in ledger] == ["thumb/4.webp"]

    def test_transient_failure_then_success(self, corpus, tmp_path):
        store = FakeBlobStore()
        original_put = store.put_object
        calls = {"n": 0}

        def flaky_put(key, body, content_type):
            calls["n"] += 1
            if calls["n"] == 1:
                return SinkResult.failure("connection reset")
            return original_put(key, body, content_type)

        store.put_object = flaky_put
        publisher = make_publisher(store, tmp_path)
        task = scan_upload_tasks(corpus, kinds=(ArtifactKind.OG,))[0]

        result = publisher.upload(task)
        assert result.state == UploadState.SUCCEEDED
        assert result.attempts == 2

    def test_replay_retries_exactly_the_failed_subset(self, corpus, tmp_path):
        store = FakeBlobStore(failing={"5.svg", "9.svg"})
        publisher = make_publisher(store, tmp_path)
        publisher.publish(corpus, kinds=(ArtifactKind.SVG,))
        assert publisher.ledger.exists()

        store.failing.clear()
        store.puts.clear()
        run = publisher.replay_failures()

        assert sorted(store.puts) == ["5.svg", "9.svg"]
        assert run.tally.processed == 2
        assert not publisher.ledger.exists()

    def test_second_run_skips_via_head(self, corpus, tmp_path):
        store = FakeBlobStore()
        publisher = make_publisher(store, tmp_path)
        publisher.publish(corpus)
        store.puts.clear()

        run = publisher.publish(corpus)

        assert store.puts == []
        assert run.tally.skipped == 53
        assert run.tally.processed == 0

    def test_size_mismatch_is_reuploaded(self, corpus, tmp_path):
        store = FakeBlobStore()
        store.objects["og/1.png"] = b"stale-object"
        publisher = make_publisher(store, tmp_path)

        run = publisher.publish(corpus, kinds=(ArtifactKind.OG,))

        assert run.tally.processed == 3
        assert store.objects["og/1.png"] == b"\x89PNG\x01"

    def test_unreadable_local_file_fails_without_retry(self, tmp_path):
        store = FakeBlobStore()
        publisher = make_publisher(store, tmp_path)
        task = UploadTask(1, ArtifactKind.SVG, str(tmp_path / "missing.svg"), "1.svg", "image/svg+xml")

        result = publisher.upload(task)
        assert result.state == UploadState.FAILED
        assert store.puts == []

    def test_bucket_unavailable_stops_stage(self, corpus, tmp_path):
        store = FakeBlobStore()
        store.check = MagicMock(side_effect=SinkUnavailable("blob store", "no credentials"))
        publisher = make_publisher(store, tmp_path)

        with pytest.raises(SinkUnavailable):
            publisher.publish(corpus)
        assert store.puts == []

    def test_partial_scope_run_keeps_other_failures(self, corpus, tmp_path):
        store = FakeBlobStore(failing={"thumb/1.webp"})
        publisher = make_publisher(store, tmp_path)
        publisher.publish(corpus, kinds=(ArtifactKind.THUMB,))

        run = publisher.publish(corpus, kinds=(ArtifactKind.SVG,))

        assert run.failures == []
        assert [t.remote_key for t in publisher.ledger.load()] == ["thumb/1.webp"]

    def test_replay_filtered_by_kind(self, corpus, tmp_path):
        store = FakeBlobStore(failing={"thumb/1.webp", "og/2.png"})
        publisher = make_publisher(store, tmp_path)
        publisher.publish(corpus, kinds=(ArtifactKind.THUMB, ArtifactKind.OG))

        store.failing.clear()
        store.puts.clear()
        run = publisher.replay_failures(kinds=(ArtifactKind.OG,))

        assert store.puts == ["og/2.png"]
        assert run.tally.processed == 1
        assert [t.remote_key for t in publisher.ledger.load()] == ["thumb/1.webp"]

    def test_empty_ledger_replay_is_noop(self, tmp_path):
        store = FakeBlobStore()
        run = make_publisher(store, tmp_path).replay_failures()
        assert run.tally.processed == 0
        assert store.checked == 0


class TestPublishDatabase:

    def _sink(self, name, result=None, error=None):
        sink = MagicMock()
        sink.name = name
        if error is not None:
            sink.execute_batch.side_effect = error
        else:
            sink.execute_batch.return_value = result
        return sink

    def test_sinks_are_independent(self):
        local = self._sink("local", error=SinkUnavailable("local", "locked"))
        remote = self._sink("remote", result=SinkResult.success())

        tally = publish_database("SELECT 1;", [local, remote])

        remote.execute_batch.assert_called_once_with("SELECT 1;")
        assert tally.processed == 1
        assert tally.failed == 1

    def test_failed_batch_is_counted(self):
        local = self._sink("local", result=SinkResult.success())
        remote = self._sink("remote", result=SinkResult.failure("chunk 1/1: syntax error"))

        tally = publish_database("SELECT 1;", [local, remote])

        assert tally.processed == 1
        assert tally.failed == 1
        assert "syntax error" in tally.errors[0][1]
