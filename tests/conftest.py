"""Pytest configuration and shared fixtures."""

import json
from pathlib import Path

import pytest

from tracker_batch.config.settings import OAuthConfig
from tracker_batch.engine.batch_store import BatchStore
from tracker_batch.exceptions import RemoteRejectedError
from tracker_batch.models.domain import CreatedTaskSpec, IssueResponse, TaskBatch, UpdateSpec
from tracker_batch.providers.base import IssueTracker


class FakeTracker(IssueTracker):
    """In-memory tracker handing out sequential issue keys.

    ``fail_on_create`` / ``fail_on_update`` are 1-based call numbers that
    raise ``RemoteRejectedError`` instead of succeeding.
    """

    def __init__(
        self,
        queue_prefix: str = "Q",
        fail_on_create: int | None = None,
        fail_on_update: int | None = None,
    ) -> None:
        self.queue_prefix = queue_prefix
        self.fail_on_create = fail_on_create
        self.fail_on_update = fail_on_update
        self.created: list[CreatedTaskSpec] = []
        self.updated: list[UpdateSpec] = []
        self.deleted: list[str] = []
        self.calls: list[str] = []

    async def create(self, spec: CreatedTaskSpec) -> IssueResponse:
        self.calls.append("create")
        if self.fail_on_create == len(self.created) + 1:
            raise RemoteRejectedError("Tracker rejected the request", status_code=422)
        self.created.append(spec)
        number = len(self.created)
        return IssueResponse(key=f"{self.queue_prefix}-{number}", id=str(1000 + number), summary=spec.summary)

    async def update(self, spec: UpdateSpec) -> IssueResponse:
        self.calls.append("update")
        if self.fail_on_update == len(self.updated) + 1:
            raise RemoteRejectedError("Tracker rejected the request", status_code=409)
        self.updated.append(spec)
        return IssueResponse(key=spec.issue_id, id="1")

    async def delete(self, issue_id: str) -> None:
        self.calls.append("delete")
        self.deleted.append(issue_id)

    async def __aenter__(self) -> "FakeTracker":
        return self

    async def __aexit__(self, *args) -> None:
        pass


class RecordingBatchStore(BatchStore):
    """BatchStore that also keeps every checkpoint it writes."""

    def __init__(self, path: Path, default_queue: str | None = None) -> None:
        super().__init__(path, default_queue=default_queue)
        self.snapshots: list[dict] = []

    async def save(self, batch: TaskBatch) -> None:
        await super().save(batch)
        self.snapshots.append(json.loads(batch.to_json()))


@pytest.fixture
def fake_tracker() -> FakeTracker:
    """Tracker whose calls always succeed."""
    return FakeTracker()


@pytest.fixture
def make_tracker() -> type[FakeTracker]:
    """FakeTracker class, for tests that need failure injection."""
    return FakeTracker


@pytest.fixture
def batch_path(tmp_path: Path) -> Path:
    """Location of the batch file under test."""
    return tmp_path / "tasks.json"


@pytest.fixture
def write_batch(batch_path: Path):
    """Write a batch document to ``batch_path``."""

    def _write(document: dict) -> Path:
        batch_path.write_text(json.dumps(document))
        return batch_path

    return _write


@pytest.fixture
def recording_store(batch_path: Path) -> RecordingBatchStore:
    return RecordingBatchStore(batch_path)


@pytest.fixture
def oauth_config() -> OAuthConfig:
    """OAuth settings with a short redirect timeout."""
    return OAuthConfig(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="http://127.0.0.1:8080/redirect",
        base_url="https://oauth.example.com",
        timeout=0.3,
    )


@pytest.fixture
def parent_with_child() -> dict:
    """Batch with one parent creation holding one subtask."""
    return {
        "created": [
            {
                "queue": "Q",
                "summary": "Parent",
                "subtasks": [{"queue": "Q", "summary": "Child"}],
            }
        ],
        "updated": [],
    }
