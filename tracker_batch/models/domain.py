"""
Domain models for tracker-batch.

This module contains the request and response shapes exchanged with the
Yandex Tracker API and the OAuth provider, and the ``TaskBatch`` that holds
the mutations still waiting to be applied.

Request and response shapes are Pydantic models so that the batch file and
API responses are validated on the way in and serialized with the API's
camelCase field names on the way out.

Example:
    Loading a batch and inspecting the pending creations::

        batch = TaskBatch.from_json(path.read_text(), default_queue="DEV")
        for key, spec in batch.created.items():
            print(key.queue, key.summary, len(spec.subtasks))
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from tracker_batch.exceptions import EmptyBatchError, EmptyUpdateError, MissingRequiredFieldsError


class AccessToken(BaseModel):
    """OAuth access token as returned by the token endpoint.

    Only the token itself and its reported lifetime are kept. The provider
    also returns ``token_type`` and ``refresh_token``; those are ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str
    expires_in: int


class TaskKey(NamedTuple):
    """Identity of a creation request.

    Two creation requests with the same queue and summary are the same
    request, whatever their other fields say.
    """

    queue: str
    summary: str


class CreatedTaskSpec(BaseModel):
    """A task creation request, possibly with nested subtasks.

    Subtasks are only sent after their parent has been created. Each is then
    re-parented onto the new issue key and queued as a top-level request.

    A ``null`` or missing ``queue`` resolves to the ``default_queue`` passed
    in the validation context, if any.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    queue: str = Field(default=None, validate_default=True)
    summary: str
    parent: str | None = None
    description: str | None = None
    sprint: list[str] = Field(default_factory=list)
    task_type: str | None = Field(default=None, alias="type")
    priority: str | None = None
    followers: list[str] = Field(default_factory=list)
    assignee: str | None = None
    author: str | None = None
    unique: str | None = None
    attachment_ids: list[str] = Field(default_factory=list, alias="attachmentIds")
    subtasks: list[CreatedTaskSpec] = Field(default_factory=list)

    @field_validator("queue", mode="before")
    @classmethod
    def _resolve_queue(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            default_queue = (info.context or {}).get("default_queue")
            if default_queue is None:
                raise ValueError("queue is not set and no default queue is configured")
            return default_queue
        if not isinstance(value, str):
            raise ValueError(f"queue must be a string, got {type(value).__name__}")
        return value

    @property
    def key(self) -> TaskKey:
        return TaskKey(self.queue, self.summary)

    def has_required_fields(self) -> bool:
        return bool(self.queue) and bool(self.summary)

    def with_parent(self, parent: str) -> CreatedTaskSpec:
        """Return a copy of this request attached to ``parent``."""
        return self.model_copy(update={"parent": parent})

    def walk(self) -> Iterator[CreatedTaskSpec]:
        """Yield this request and every nested subtask, depth first."""
        yield self
        for subtask in self.subtasks:
            yield from subtask.walk()

    def to_payload(self) -> dict[str, Any]:
        """Build the ``POST /v2/issues`` body (no subtasks, no unset fields)."""
        data = self.model_dump(by_alias=True, exclude={"subtasks"}, exclude_none=True)
        return {name: value for name, value in data.items() if value != []}


class UpdateSpec(BaseModel):
    """A patch for an existing issue.

    Every field except ``issue_id`` is optional, but at least one of them must
    be set for the patch to be valid.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    issue_id: str
    summary: str | None = None
    parent: str | None = None
    description: str | None = None
    sprint: str | None = None
    task_type: str | None = Field(default=None, alias="type")
    priority: str | None = None
    followers: list[str] = Field(default_factory=list)
    attachment_ids: list[str] = Field(default_factory=list, alias="attachmentIds")
    description_attachment_ids: list[str] = Field(default_factory=list, alias="descriptionAttachmentIds")

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in type(self).model_fields if name != "issue_id")

    def to_payload(self) -> dict[str, Any]:
        """Build the ``PATCH /v2/issues/{issue_id}`` body."""
        data = self.model_dump(by_alias=True, exclude={"issue_id"}, exclude_none=True)
        return {name: value for name, value in data.items() if value != []}


class IssueStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    key: str
    display: str | None = None


class UserRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str | None = Field(default=None, alias="self")
    id: str | None = None
    display: str | None = None


class IssueResponse(BaseModel):
    """Issue returned by a successful create or update call."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    key: str
    id: str
    url: str | None = Field(default=None, alias="self")
    version: int | None = None
    summary: str | None = None
    description: str | None = None
    status: IssueStatus | None = None
    created_by: UserRef | None = Field(default=None, alias="createdBy")
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")


class ErrorResponse(BaseModel):
    """Error payload returned by the Tracker API for rejected calls."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    error_messages: list[str] = Field(default_factory=list, alias="errorMessages")
    errors: dict[str, str] = Field(default_factory=dict)
    status_code: int | None = Field(default=None, alias="statusCode")


class BatchDocument(BaseModel):
    """On-disk shape of a batch file."""

    created: list[CreatedTaskSpec] = Field(default_factory=list)
    updated: list[UpdateSpec] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)


@dataclass
class TaskBatch:
    """The mutations still waiting to be applied.

    ``created`` is keyed by ``TaskKey`` and keeps insertion order, so pending
    creations are processed first in, first out. ``updated`` and ``deleted``
    are ordered lists without duplicates.

    The whole batch is rewritten to disk after every applied mutation, so the
    file always lists exactly the outstanding work.
    """

    created: dict[TaskKey, CreatedTaskSpec] = field(default_factory=dict)
    updated: list[UpdateSpec] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @classmethod
    def from_specs(
        cls,
        created: Iterable[CreatedTaskSpec] = (),
        updated: Iterable[UpdateSpec] = (),
        deleted: Iterable[str] = (),
    ) -> TaskBatch:
        batch = cls()
        for spec in created:
            batch.add_created(spec)
        for update in updated:
            batch.add_updated(update)
        for issue_id in deleted:
            batch.add_deleted(issue_id)
        return batch

    @classmethod
    def from_json(cls, content: str, default_queue: str | None = None) -> TaskBatch:
        """Parse a batch file.

        Raises:
            pydantic.ValidationError: If the content is not valid JSON or does
                not match the batch shape.
        """
        document = BatchDocument.model_validate_json(content, context={"default_queue": default_queue})
        return cls.from_specs(document.created, document.updated, document.deleted)

    def to_document(self) -> BatchDocument:
        return BatchDocument(
            created=list(self.created.values()),
            updated=list(self.updated),
            deleted=list(self.deleted),
        )

    def to_json(self) -> str:
        return self.to_document().model_dump_json(by_alias=True, exclude_none=True, indent=2)

    def add_created(self, spec: CreatedTaskSpec) -> bool:
        """Add a creation request. Returns False if its key is already pending."""
        if spec.key in self.created:
            return False
        self.created[spec.key] = spec
        return True

    def add_updated(self, spec: UpdateSpec) -> bool:
        if spec in self.updated:
            return False
        self.updated.append(spec)
        return True

    def add_deleted(self, issue_id: str) -> bool:
        if issue_id in self.deleted:
            return False
        self.deleted.append(issue_id)
        return True

    def is_empty(self) -> bool:
        return not self.created and not self.updated and not self.deleted

    def pending_count(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)

    def validate(self) -> None:
        """Check that a freshly loaded batch is worth processing.

        Raises:
            EmptyBatchError: If there is nothing to do.
            MissingRequiredFieldsError: If a creation (or nested subtask) has
                an empty queue or summary.
            EmptyUpdateError: If an update carries no patch fields.
        """
        if self.is_empty():
            raise EmptyBatchError("Task batch is empty")

        for spec in self.created.values():
            for node in spec.walk():
                if not node.has_required_fields():
                    raise MissingRequiredFieldsError(
                        f"Task creation requires queue and summary (queue={node.queue!r}, summary={node.summary!r})"
                    )

        for update in self.updated:
            if update.is_empty():
                raise EmptyUpdateError(f"Update for issue {update.issue_id} has no fields to change")
