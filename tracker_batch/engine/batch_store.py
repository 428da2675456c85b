"""
Batch file loading and checkpointing.

The batch file is both the input of a run and its checkpoint: after every
applied mutation the whole remaining batch is written back over it. A rerun
after any failure therefore starts from exactly the outstanding work.

Checkpoint File Structure::

    {
      "created": [{"queue": "DEV", "summary": "Epic", "subtasks": [...]}],
      "updated": [{"issue_id": "DEV-12", "priority": "critical"}],
      "deleted": ["DEV-40"]
    }

Writes are atomic: the batch is written to a ``.tmp`` sibling first and then
renamed over the target. Concurrent runs against the same file are not
supported.
"""

import contextlib
import json
from pathlib import Path

import aiofiles
import structlog
from pydantic import ValidationError

from tracker_batch.exceptions import BatchParseError, BatchReadError, CheckpointError, PersistenceError
from tracker_batch.models.domain import TaskBatch

log = structlog.get_logger(__name__)


TEMPLATE_BATCH = {
    "created": [
        {
            "queue": "DEV",
            "summary": "Parent task",
            "description": "Created first; its subtasks are attached to the new issue key",
            "type": "task",
            "priority": "normal",
            "assignee": "login",
            "followers": ["login"],
            "unique": "parent-task-2024-1",
            "subtasks": [
                {"queue": "DEV", "summary": "First subtask"},
                {"queue": None, "summary": "Subtask in the configured default queue"},
            ],
        }
    ],
    "updated": [
        {"issue_id": "DEV-1", "summary": "New summary", "priority": "critical"},
    ],
    "deleted": [],
}


class BatchStore:
    """Load, validate and checkpoint a ``TaskBatch`` at a fixed path.

    Example:
        >>> store = BatchStore("tasks.json", default_queue="DEV")
        >>> batch = await store.load()
        >>> batch.created.clear()
        >>> await store.save(batch)
    """

    def __init__(self, path: str | Path, default_queue: str | None = None) -> None:
        """Initialize the store.

        Args:
            path: Batch file location.
            default_queue: Queue substituted for creations whose queue is
                ``null`` or missing.
        """
        self.path = Path(path)
        self.default_queue = default_queue

    async def load(self) -> TaskBatch:
        """Read, parse and validate the batch file.

        Raises:
            BatchReadError: If the file cannot be read.
            BatchParseError: If the file is not a valid batch document.
            InvalidBatchError: If the batch is empty or has an invalid member.
        """
        try:
            async with aiofiles.open(self.path) as f:
                content = await f.read()
        except OSError as e:
            raise BatchReadError(f"Cannot read batch file {self.path}: {e}") from e

        try:
            batch = TaskBatch.from_json(content, default_queue=self.default_queue)
        except ValidationError as e:
            raise BatchParseError(f"Invalid batch file {self.path}: {e}") from e

        batch.validate()
        log.info(
            "batch_loaded",
            path=str(self.path),
            created=len(batch.created),
            updated=len(batch.updated),
            deleted=len(batch.deleted),
        )
        return batch

    async def save(self, batch: TaskBatch) -> None:
        """Checkpoint the full batch, replacing the previous contents.

        Raises:
            CheckpointError: If the file cannot be written.
        """
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            async with aiofiles.open(tmp_path, "w") as f:
                await f.write(batch.to_json())
            tmp_path.replace(self.path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            log.error("checkpoint_failed", path=str(self.path), error=str(e))
            raise CheckpointError(f"Cannot write checkpoint {self.path}: {e}") from e

        log.debug("checkpoint_saved", path=str(self.path), pending=batch.pending_count())

    async def write_template(self, overwrite: bool = False) -> Path:
        """Write an example batch file.

        Raises:
            PersistenceError: If the file exists (and ``overwrite`` is False)
                or cannot be written.
        """
        if self.path.exists() and not overwrite:
            raise PersistenceError(f"Batch file already exists: {self.path}")
        try:
            async with aiofiles.open(self.path, "w") as f:
                await f.write(json.dumps(TEMPLATE_BATCH, indent=2, ensure_ascii=False))
        except OSError as e:
            raise PersistenceError(f"Cannot write batch template {self.path}: {e}") from e
        return self.path
