import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

from models.upload_task import UploadResult, UploadState, UploadTask
from runtime.artifacts import write_atomic

logger = logging.getLogger(__name__)

LEDGER_NAME = "failed-uploads.json"


class FailureLedger:
    """
    Outstanding failed uploads, persisted as JSON so a later run can retry
    exactly that subset. Each run only settles the keys it attempted; entries
    for other keys are carried forward. An empty ledger removes the file.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def _entries(self) -> List[Dict[str, Any]]:
        if not self.exists():
            return []
        data = json.loads(self.path.read_text(encoding="utf-8"))
        return list(data.get("failures", []))

    def load(self) -> List[UploadTask]:
        return [UploadTask.from_dict(entry) for entry in self._entries()]

    def save(self, failures: Sequence[UploadResult]) -> None:
        """Replace the ledger with exactly these failures."""
        self._write([result.to_ledger_entry() for result in failures])

    def merge(self, results: Sequence[UploadResult]) -> None:
        """
        Fold one run's results into the ledger: every attempted key is
        settled by its new outcome, untouched keys keep their old entry.
        """
        attempted = {result.task.remote_key for result in results}
        kept = [entry for entry in self._entries() if entry.get("remote_key") not in attempted]
        failed = [r.to_ledger_entry() for r in results if r.state == UploadState.FAILED]
        if kept:
            logger.info("%d earlier failures outside this run kept in %s", len(kept), self.path)
        self._write(kept + failed)

    def _write(self, entries: List[Dict[str, Any]]) -> None:
        if not entries:
            self.clear()
            return
        payload = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "count": len(entries),
            "failures": entries,
        }
        write_atomic(self.path, json.dumps(payload, indent=2))
        logger.warning("%d failed uploads recorded in %s", len(entries), self.path)

    def clear(self) -> None:
        if self.exists():
            self.path.unlink()
            logger.info("failure ledger cleared (%s)", self.path)
