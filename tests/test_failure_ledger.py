import json

from models.upload_task import ArtifactKind, UploadResult, UploadState, UploadTask
from runtime.persistence.failure_ledger import FailureLedger


def failed(token_id, error="503"):
    task = UploadTask(
        token_id=token_id,
        kind=ArtifactKind.THUMB,
        local_path=f"/data/thumbnails/{token_id}.webp",
        remote_key=f"thumb/{token_id}.webp",
        content_type="image/webp",
    )
    return UploadResult(task=task, state=UploadState.FAILED, attempts=3, error=error)


def test_save_and_load(tmp_path):
    ledger = FailureLedger(tmp_path / "failed-uploads.json")
    ledger.save([failed(1), failed(8, error="timeout")])

    data = json.loads(ledger.path.read_text())
    assert data["count"] == 2
    assert data["failures"][1] == {
        "token_id": 8,
        "kind": "thumb",
        "local_path": "/data/thumbnails/8.webp",
        "remote_key": "thumb/8.webp",
        "content_type": "image/webp",
        "success": False,
        "attempts": 3,
        "error": "timeout",
    }

    tasks = ledger.load()
    assert [t.token_id for t in tasks] == [1, 8]
    assert tasks[0].kind == ArtifactKind.THUMB


def test_clean_run_removes_ledger(tmp_path):
    ledger = FailureLedger(tmp_path / "failed-uploads.json")
    ledger.save([failed(1)])
    ledger.save([])
    assert not ledger.exists()
    assert ledger.load() == []


def succeeded(token_id, kind=ArtifactKind.SVG):
    task = UploadTask(
        token_id=token_id,
        kind=kind,
        local_path=f"/data/images/{token_id}.svg",
        remote_key=f"{token_id}.svg",
        content_type="image/svg+xml",
    )
    return UploadResult(task=task, state=UploadState.SUCCEEDED, attempts=1)


def test_merge_keeps_entries_outside_the_run(tmp_path):
    ledger = FailureLedger(tmp_path / "failed-uploads.json")
    ledger.save([failed(1)])

    ledger.merge([succeeded(1), succeeded(2)])

    assert [t.remote_key for t in ledger.load()] == ["thumb/1.webp"]


def test_merge_settles_attempted_keys(tmp_path):
    ledger = FailureLedger(tmp_path / "failed-uploads.json")
    ledger.save([failed(1), failed(2)])

    retried = failed(1)
    retried.state = UploadState.SUCCEEDED
    ledger.merge([retried, failed(3)])

    assert [t.remote_key for t in ledger.load()] == ["thumb/2.webp", "thumb/3.webp"]


def test_merge_of_everything_clears(tmp_path):
    ledger = FailureLedger(tmp_path / "failed-uploads.json")
    ledger.save([failed(1)])
    retried = failed(1)
    retried.state = UploadState.SUCCEEDED

    ledger.merge([retried])

    assert not ledger.exists()
