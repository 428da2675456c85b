"""
Resumable batch processor.

The processor drains a ``TaskBatch`` one remote call at a time and
checkpoints the remaining batch after every successful call.

Processing Order:
    1. Creations, first in first out. When a creation succeeds, its subtasks
       are re-parented onto the new issue key and appended to the pending
       creations, so every parent exists before its children are sent.
    2. Updates, only once every creation (including generated subtasks) is
       done.
    3. Deletions, last.

Failure Model:
    A failed remote call propagates immediately. The failed member is still
    in the batch and in the last checkpoint, so a rerun retries it. A failed
    checkpoint write is fatal: the remote mutation already happened and a
    rerun from the stale checkpoint would send it again.

Example:
    >>> processor = BatchProcessor(client, store, request_delay=1.0)
    >>> summary = await processor.process(batch)
    >>> print(summary.created)
    ['DEV-101', 'DEV-102']
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from tracker_batch.engine.batch_store import BatchStore
from tracker_batch.models.domain import TaskBatch
from tracker_batch.providers.base import IssueTracker

log = structlog.get_logger(__name__)


@dataclass
class ProcessSummary:
    """Issue keys/ids touched during one run."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)


class BatchProcessor:
    """Drain a batch against an issue tracker, checkpointing after each call.

    Attributes:
        client: Tracker receiving the mutations.
        store: Where the remaining batch is checkpointed.
        request_delay: Seconds to wait after every remote call.
    """

    def __init__(
        self,
        client: IssueTracker,
        store: BatchStore,
        request_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.store = store
        self.request_delay = request_delay
        self._sleep = sleep

    async def process(self, batch: TaskBatch) -> ProcessSummary:
        """Apply every mutation in ``batch``, emptying it in place.

        Raises:
            RemoteCallError: A remote call failed; processing stops there.
            CheckpointError: The batch could not be written after a call.
        """
        summary = ProcessSummary()
        log.info("batch_processing_started", pending=batch.pending_count())

        await self._process_created(batch, summary)
        await self._process_updated(batch, summary)
        await self._process_deleted(batch, summary)

        log.info(
            "batch_processing_completed",
            created=len(summary.created),
            updated=len(summary.updated),
            deleted=len(summary.deleted),
        )
        return summary

    async def _process_created(self, batch: TaskBatch, summary: ProcessSummary) -> None:
        while batch.created:
            key, spec = next(iter(batch.created.items()))
            response = await self.client.create(spec)

            del batch.created[key]
            for subtask in spec.subtasks:
                if not batch.add_created(subtask.with_parent(response.key)):
                    log.warning("duplicate_subtask_skipped", queue=subtask.queue, summary=subtask.summary)

            summary.created.append(response.key)
            log.info("issue_created", key=response.key, summary=spec.summary, subtasks=len(spec.subtasks))
            await self._checkpoint(batch)

    async def _process_updated(self, batch: TaskBatch, summary: ProcessSummary) -> None:
        while batch.updated:
            spec = batch.updated[0]
            await self.client.update(spec)

            batch.updated.pop(0)
            summary.updated.append(spec.issue_id)
            log.info("issue_updated", issue_id=spec.issue_id)
            await self._checkpoint(batch)

    async def _process_deleted(self, batch: TaskBatch, summary: ProcessSummary) -> None:
        while batch.deleted:
            issue_id = batch.deleted[0]
            await self.client.delete(issue_id)

            batch.deleted.pop(0)
            summary.deleted.append(issue_id)
            log.info("issue_deleted", issue_id=issue_id)
            await self._checkpoint(batch)

    async def _checkpoint(self, batch: TaskBatch) -> None:
        await self.store.save(batch)
        if self.request_delay:
            await self._sleep(self.request_delay)
