"""
Abstract interface for issue trackers driven by the batch processor.

The processor only needs three calls, so anything implementing them (the
REST client, or a fake in tests) can drain a batch.
"""

from abc import ABC, abstractmethod

from tracker_batch.models.domain import CreatedTaskSpec, IssueResponse, UpdateSpec


class IssueTracker(ABC):
    """Remote issue tracker accepting create, update and delete calls.

    Implementations raise ``RemoteCallError`` subclasses on failure and never
    retry on their own.
    """

    @abstractmethod
    async def create(self, spec: CreatedTaskSpec) -> IssueResponse:
        """Create an issue and return it with its newly assigned key."""
        pass

    @abstractmethod
    async def update(self, spec: UpdateSpec) -> IssueResponse:
        """Apply the patch in ``spec`` to issue ``spec.issue_id``."""
        pass

    @abstractmethod
    async def delete(self, issue_id: str) -> None:
        """Delete an issue."""
        pass
