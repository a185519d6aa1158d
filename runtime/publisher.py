"""
Remote Publisher.

Converges remote storage onto the local corpus:

- database: the prepared SQL batch is executed on the local sink, then on
  the remote sink; a failure on one does not stop the other.
- blobs: upload tasks are rebuilt from the local directories (or from the
  failure ledger in replay mode) and transferred in bounded windows. Each
  transfer is retried per RetryPolicy; a task that exhausts its budget is
  recorded and the run continues. At the end of the run its results are
  merged into the ledger.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from models.upload_task import ArtifactKind, UploadResult, UploadState, UploadTask
from runtime.artifacts import ArtifactKey, LocalArtifactIndex
from runtime.errors import SinkUnavailable, UploadError
from runtime.persistence.failure_ledger import FailureLedger
from runtime.policies.retry_policy import RetryPolicy
from runtime.progress import ProgressTracker, StageTally
from runtime.windows import run_windows

logger = logging.getLogger(__name__)

# kind -> (remote key template, content type)
REMOTE_LAYOUT: Dict[ArtifactKind, Tuple[str, str]] = {
    ArtifactKind.SVG: ("{token_id}.svg", "image/svg+xml"),
    ArtifactKind.THUMB: ("thumb/{token_id}.webp", "image/webp"),
    ArtifactKind.OG: ("og/{token_id}.png", "image/png"),
}
PUBLISHED_KINDS = (ArtifactKind.SVG, ArtifactKind.THUMB, ArtifactKind.OG)


def remote_key(kind: ArtifactKind, token_id: int) -> str:
    return REMOTE_LAYOUT[kind][0].format(token_id=token_id)


def scan_upload_tasks(
    index: LocalArtifactIndex, kinds: Iterable[ArtifactKind] = PUBLISHED_KINDS
) -> List[UploadTask]:
    """One task per local artifact of each published kind, ascending token id."""
    tasks = []
    for kind in kinds:
        content_type = REMOTE_LAYOUT[kind][1]
        for token_id in index.token_ids(kind):
            tasks.append(
                UploadTask(
                    token_id=token_id,
                    kind=kind,
                    local_path=str(index.path_for(ArtifactKey(token_id, kind))),
                    remote_key=remote_key(kind, token_id),
                    content_type=content_type,
                )
            )
    return tasks


def publish_database(sql: str, sinks: Sequence) -> StageTally:
    """Execute one prepared batch on each sink in order, each independently."""
    tally = StageTally(stage="database")
    for sink in sinks:
        logger.info("Executing SQL batch on %s...", sink.name)
        try:
            result = sink.execute_batch(sql)
        except SinkUnavailable as e:
            logger.error("✗ %s", e)
            tally.record_failure(None, e)
            continue

        if result.ok:
            logger.info("✓ %s updated", sink.name)
            tally.processed += 1
        else:
            logger.error("✗ %s update failed: %s", sink.name, result.error)
            tally.record_failure(None, UploadError(None, result.error))
    return tally


@dataclass
class BlobRun:
    tally: StageTally
    results: List[UploadResult] = field(default_factory=list)

    @property
    def failures(self) -> List[UploadResult]:
        return [r for r in self.results if r.state == UploadState.FAILED]


class Publisher:
    def __init__(
        self,
        blob_store,
        ledger: FailureLedger,
        retry_policy: Optional[RetryPolicy] = None,
        window_size: int = 10,
        report_every: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.blob_store = blob_store
        self.ledger = ledger
        self.retry_policy = retry_policy or RetryPolicy()
        self.window_size = window_size
        self.report_every = max(report_every, 1)
        self._sleep = sleep

    # -------------------------------------------------
    # Single transfer
    # -------------------------------------------------

    def _attempt(self, task: UploadTask, body: bytes, result: UploadResult) -> None:
        head = self.blob_store.head_object(task.remote_key)
        if head.ok and head.content_length == len(body):
            result.skipped = True
            return
        put = self.blob_store.put_object(task.remote_key, body, task.content_type)
        if not put.ok:
            raise UploadError(task.token_id, put.error)

    def upload(self, task: UploadTask) -> UploadResult:
        """Run one task through PENDING -> ATTEMPTING(n) -> SUCCEEDED | FAILED."""
        result = UploadResult(task=task)
        try:
            body = Path(task.local_path).read_bytes()
        except OSError as e:
            result.state = UploadState.FAILED
            result.error = f"local file unreadable: {e}"
            return result

        while True:
            result.attempts += 1
            result.state = UploadState.ATTEMPTING
            try:
                self._attempt(task, body, result)
            except Exception as e:
                error = e.cause if isinstance(e, UploadError) else f"{type(e).__name__}: {e}"
                decision = self.retry_policy.decide(result.attempts, error)
                if not decision.retry:
                    result.state = UploadState.FAILED
                    result.error = str(error)
                    return result
                logger.debug("%s: %s", task.remote_key, decision.reason)
                self._sleep(decision.delay_sec)
                continue

            result.state = UploadState.SUCCEEDED
            result.error = None
            return result

    # -------------------------------------------------
    # Runs
    # -------------------------------------------------

    def publish_blobs(self, tasks: Sequence[UploadTask], stage: str = "blobs") -> BlobRun:
        run = BlobRun(tally=StageTally(stage=stage))
        tally = run.tally
        progress = ProgressTracker(tally, total=len(tasks))
        logger.info("%s: %d upload tasks, window=%d", stage, len(tasks), self.window_size)

        for n, window in enumerate(
            run_windows(tasks, self.window_size, lambda task, _slot: self.upload(task)), start=1
        ):
            for settled in window:
                if settled.error is not None:
                    # upload() returns results; an escape here is a bug, but stays isolated
                    result = UploadResult(
                        task=settled.item, state=UploadState.FAILED, error=str(settled.error)
                    )
                else:
                    result = settled.value
                run.results.append(result)

                if result.state == UploadState.SUCCEEDED:
                    if result.skipped:
                        tally.skipped += 1
                    else:
                        tally.processed += 1
                else:
                    logger.warning(
                        "✗ Failed to upload %s after %d attempts: %s",
                        result.task.remote_key, result.attempts, result.error,
                    )
                    tally.failed += 1
                    tally.errors.append((result.token_id, result.error or ""))
            if n % self.report_every == 0 or len(run.results) == len(tasks):
                progress.report()

        self.ledger.merge(run.results)
        logger.info("%s (%.1fs)", tally.summary_line(), progress.elapsed_sec())
        return run

    def publish(self, index: LocalArtifactIndex, kinds: Iterable[ArtifactKind] = PUBLISHED_KINDS) -> BlobRun:
        """Full scan: every local artifact that is absent or stale remotely."""
        self.blob_store.check()
        return self.publish_blobs(scan_upload_tasks(index, kinds))

    def replay_failures(self, kinds: Optional[Iterable[ArtifactKind]] = None) -> BlobRun:
        """Retry exactly the tasks recorded in the failure ledger (optionally of some kinds)."""
        tasks = self.ledger.load()
        if kinds is not None:
            wanted = set(kinds)
            tasks = [t for t in tasks if t.kind in wanted]
        logger.info("Replaying %d failed uploads from %s", len(tasks), self.ledger.path)
        if not tasks:
            return BlobRun(tally=StageTally(stage="blobs (replay)"))
        self.blob_store.check()
        return self.publish_blobs(tasks, stage="blobs (replay)")
