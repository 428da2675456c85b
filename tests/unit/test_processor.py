"""Tests for tracker_batch/engine/processor.py."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from tracker_batch.engine.batch_store import BatchStore
from tracker_batch.engine.processor import BatchProcessor, ProcessSummary
from tracker_batch.exceptions import CheckpointError, RemoteRejectedError
from tracker_batch.models.domain import CreatedTaskSpec, TaskBatch, UpdateSpec


def _summaries(document: dict) -> list[str]:
    return [item["summary"] for item in document["created"]]


# =============================================================================
# Creation
# =============================================================================


class TestCreation:
    """Tests for the creation phase."""

    @pytest.mark.asyncio
    async def test_parent_then_child(self, fake_tracker, recording_store, write_batch, parent_with_child) -> None:
        """Parent is created first and the child is sent with the new parent key."""
        write_batch(parent_with_child)
        batch = await recording_store.load()
        processor = BatchProcessor(fake_tracker, recording_store, request_delay=0)

        summary = await processor.process(batch)

        assert summary.created == ["Q-1", "Q-2"]
        assert [spec.summary for spec in fake_tracker.created] == ["Parent", "Child"]
        assert fake_tracker.created[0].parent is None
        assert fake_tracker.created[1].parent == "Q-1"

        assert len(recording_store.snapshots) == 2
        first = recording_store.snapshots[0]["created"]
        assert len(first) == 1
        assert first[0]["summary"] == "Child"
        assert first[0]["parent"] == "Q-1"
        assert recording_store.snapshots[1]["created"] == []

    @pytest.mark.asyncio
    async def test_batch_is_empty_after_success(self, fake_tracker, recording_store, write_batch, parent_with_child) -> None:
        write_batch(parent_with_child)
        batch = await recording_store.load()

        await BatchProcessor(fake_tracker, recording_store, request_delay=0).process(batch)

        assert batch.is_empty()
        on_disk = json.loads(recording_store.path.read_text())
        assert on_disk == {"created": [], "updated": [], "deleted": []}

    @pytest.mark.asyncio
    async def test_failure_on_second_creation_keeps_child_pending(
        self, make_tracker, recording_store, write_batch, parent_with_child
    ) -> None:
        """A rerun after a failed call resumes from the checkpoint."""
        write_batch(parent_with_child)
        tracker = make_tracker(fail_on_create=2)
        batch = await recording_store.load()

        with pytest.raises(RemoteRejectedError):
            await BatchProcessor(tracker, recording_store, request_delay=0).process(batch)

        on_disk = json.loads(recording_store.path.read_text())
        assert _summaries(on_disk) == ["Child"]
        assert on_disk["created"][0]["parent"] == "Q-1"

        retry_tracker = make_tracker(queue_prefix="R")
        resumed = await recording_store.load()
        summary = await BatchProcessor(retry_tracker, recording_store, request_delay=0).process(resumed)

        assert summary.created == ["R-1"]
        assert retry_tracker.created[0].summary == "Child"
        assert retry_tracker.created[0].parent == "Q-1"

    @pytest.mark.asyncio
    async def test_failure_on_first_creation_writes_nothing(
        self, make_tracker, recording_store, write_batch, parent_with_child
    ) -> None:
        path = write_batch(parent_with_child)
        original = path.read_text()
        batch = await recording_store.load()

        with pytest.raises(RemoteRejectedError):
            await BatchProcessor(make_tracker(fail_on_create=1), recording_store, request_delay=0).process(batch)

        assert recording_store.snapshots == []
        assert path.read_text() == original

    @pytest.mark.asyncio
    async def test_creations_are_first_in_first_out(self, fake_tracker, recording_store) -> None:
        """Generated subtasks go behind requests that were already pending."""
        batch = TaskBatch.from_specs(
            created=[
                CreatedTaskSpec(queue="Q", summary="A", subtasks=[CreatedTaskSpec(queue="Q", summary="A1")]),
                CreatedTaskSpec(queue="Q", summary="B"),
            ]
        )

        await BatchProcessor(fake_tracker, recording_store, request_delay=0).process(batch)

        assert [spec.summary for spec in fake_tracker.created] == ["A", "B", "A1"]
        assert fake_tracker.created[2].parent == "Q-1"

    @pytest.mark.asyncio
    async def test_nested_subtasks_attach_to_their_own_parent(self, fake_tracker, recording_store) -> None:
        grandchild = CreatedTaskSpec(queue="Q", summary="Grandchild")
        child = CreatedTaskSpec(queue="Q", summary="Child", subtasks=[grandchild])
        batch = TaskBatch.from_specs(created=[CreatedTaskSpec(queue="Q", summary="Root", subtasks=[child])])

        summary = await BatchProcessor(fake_tracker, recording_store, request_delay=0).process(batch)

        assert summary.created == ["Q-1", "Q-2", "Q-3"]
        parents = {spec.summary: spec.parent for spec in fake_tracker.created}
        assert parents == {"Root": None, "Child": "Q-1", "Grandchild": "Q-2"}

    @pytest.mark.asyncio
    async def test_subtask_duplicating_pending_creation_is_skipped(self, fake_tracker, recording_store) -> None:
        batch = TaskBatch.from_specs(
            created=[
                CreatedTaskSpec(queue="Q", summary="Parent", subtasks=[CreatedTaskSpec(queue="Q", summary="Shared")]),
                CreatedTaskSpec(queue="Q", summary="Shared", description="already queued"),
            ]
        )

        await BatchProcessor(fake_tracker, recording_store, request_delay=0).process(batch)

        assert [spec.summary for spec in fake_tracker.created] == ["Parent", "Shared"]
        assert fake_tracker.created[1].description == "already queued"


# =============================================================================
# Updates and deletions
# =============================================================================


class TestUpdatesAndDeletions:
    """Tests for the update and delete phases."""

    @pytest.mark.asyncio
    async def test_updates_wait_for_all_creations(self, fake_tracker, recording_store, parent_with_child) -> None:
        batch = TaskBatch.from_specs(
            created=[CreatedTaskSpec.model_validate(parent_with_child["created"][0])],
            updated=[UpdateSpec(issue_id="Q-100", summary="renamed")],
        )

        await BatchProcessor(fake_tracker, recording_store, request_delay=0).process(batch)

        assert fake_tracker.calls == ["create", "create", "update"]

    @pytest.mark.asyncio
    async def test_deletions_run_last(self, fake_tracker, recording_store) -> None:
        batch = TaskBatch.from_specs(
            created=[CreatedTaskSpec(queue="Q", summary="New")],
            updated=[UpdateSpec(issue_id="Q-5", priority="low")],
            deleted=["Q-6", "Q-7"],
        )

        summary = await BatchProcessor(fake_tracker, recording_store, request_delay=0).process(batch)

        assert fake_tracker.calls == ["create", "update", "delete", "delete"]
        assert summary == ProcessSummary(created=["Q-1"], updated=["Q-5"], deleted=["Q-6", "Q-7"])
        assert summary.total == 4

    @pytest.mark.asyncio
    async def test_checkpoint_after_every_update(self, fake_tracker, recording_store) -> None:
        batch = TaskBatch.from_specs(
            updated=[UpdateSpec(issue_id="Q-1", summary="a"), UpdateSpec(issue_id="Q-2", summary="b")]
        )

        await BatchProcessor(fake_tracker, recording_store, request_delay=0).process(batch)

        remaining = [[item["issue_id"] for item in snap["updated"]] for snap in recording_store.snapshots]
        assert remaining == [["Q-2"], []]

    @pytest.mark.asyncio
    async def test_failed_update_stays_at_head(self, make_tracker, recording_store) -> None:
        tracker = make_tracker(fail_on_update=2)
        batch = TaskBatch.from_specs(
            updated=[UpdateSpec(issue_id="Q-1", summary="a"), UpdateSpec(issue_id="Q-2", summary="b")],
            deleted=["Q-3"],
        )

        with pytest.raises(RemoteRejectedError):
            await BatchProcessor(tracker, recording_store, request_delay=0).process(batch)

        assert [spec.issue_id for spec in batch.updated] == ["Q-2"]
        assert batch.deleted == ["Q-3"]
        assert tracker.deleted == []


# =============================================================================
# Checkpointing and pacing
# =============================================================================


class TestCheckpointing:
    """Tests for checkpoint failures and request pacing."""

    @pytest.mark.asyncio
    async def test_checkpoint_failure_stops_processing(self, fake_tracker) -> None:
        store = MagicMock(spec=BatchStore)
        store.save = AsyncMock(side_effect=CheckpointError("disk full"))
        batch = TaskBatch.from_specs(
            created=[CreatedTaskSpec(queue="Q", summary="A"), CreatedTaskSpec(queue="Q", summary="B")]
        )

        with pytest.raises(CheckpointError):
            await BatchProcessor(fake_tracker, store, request_delay=0).process(batch)

        assert [spec.summary for spec in fake_tracker.created] == ["A"]
        store.save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delay_after_every_call(self, fake_tracker, recording_store) -> None:
        sleep = AsyncMock()
        batch = TaskBatch.from_specs(
            created=[CreatedTaskSpec(queue="Q", summary="A")],
            updated=[UpdateSpec(issue_id="Q-9", summary="x")],
            deleted=["Q-8"],
        )

        await BatchProcessor(fake_tracker, recording_store, request_delay=1.5, sleep=sleep).process(batch)

        assert sleep.await_count == 3
        sleep.assert_awaited_with(1.5)

    @pytest.mark.asyncio
    async def test_zero_delay_never_sleeps(self, fake_tracker, recording_store) -> None:
        sleep = AsyncMock()
        batch = TaskBatch.from_specs(created=[CreatedTaskSpec(queue="Q", summary="A")])

        await BatchProcessor(fake_tracker, recording_store, request_delay=0, sleep=sleep).process(batch)

        sleep.assert_not_awaited()
