"""Yandex Tracker client using direct REST API calls."""

from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from tracker_batch.exceptions import RemoteRejectedError, RemoteTransportError, ResponseParseError
from tracker_batch.models.domain import CreatedTaskSpec, ErrorResponse, IssueResponse, UpdateSpec
from tracker_batch.providers.base import IssueTracker

log = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.tracker.yandex.net"

SUCCESS_STATUSES = frozenset({200, 201})
# DELETE answers 204 with an empty body
DELETE_SUCCESS_STATUSES = SUCCESS_STATUSES | {204}

ModelT = TypeVar("ModelT", bound=BaseModel)


class TrackerRestClient(IssueTracker):
    """Thin wrapper over the Tracker ``/v2/issues`` endpoints.

    Every request carries the OAuth token and the organization id. The client
    keeps no state between calls beyond the underlying HTTP connection.
    """

    def __init__(
        self,
        token: str,
        org_id: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Tracker client.

        Args:
            token: OAuth access token
            org_id: Organization id (sent as ``X-Org-ID``)
            base_url: Tracker API base URL
            timeout: Per-request timeout in seconds
            client: Optional pre-built HTTP client (not closed by this class)
        """
        self.base_url = base_url.rstrip("/")
        self.api_base = f"{self.base_url}/v2"
        self.token = token.strip() if token else token
        self.org_id = org_id
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"OAuth {self.token}",
            "X-Org-ID": self.org_id,
        }

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "TrackerRestClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def create(self, spec: CreatedTaskSpec) -> IssueResponse:
        """Create an issue (subtasks are not sent)."""
        log.info("create_issue", queue=spec.queue, summary=spec.summary, parent=spec.parent)

        response = await self._send("POST", "/issues", json=spec.to_payload())
        return self._handle_response(response, IssueResponse, SUCCESS_STATUSES)

    async def update(self, spec: UpdateSpec) -> IssueResponse:
        """Patch an existing issue."""
        log.info("update_issue", issue_id=spec.issue_id)

        response = await self._send("PATCH", f"/issues/{spec.issue_id}", json=spec.to_payload())
        return self._handle_response(response, IssueResponse, SUCCESS_STATUSES)

    async def delete(self, issue_id: str) -> None:
        """Delete an issue."""
        log.info("delete_issue", issue_id=issue_id)

        response = await self._send("DELETE", f"/issues/{issue_id}")
        self._handle_response(response, None, DELETE_SUCCESS_STATUSES)

    async def _send(self, method: str, path: str, json: dict[str, Any] | None = None) -> httpx.Response:
        url = f"{self.api_base}{path}"
        try:
            return await self._get_client().request(method, url, json=json, headers=self.headers)
        except httpx.HTTPError as e:
            log.error("tracker_request_failed", method=method, url=url, error=str(e))
            raise RemoteTransportError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _handle_response(
        response: httpx.Response,
        model: type[ModelT] | None,
        success_statuses: frozenset[int],
    ) -> ModelT | None:
        """Classify a response into a parsed success record or a typed error.

        The body is read as text before branching so that the error payload
        can be parsed for rejected calls too.

        Raises:
            RemoteRejectedError: Status outside ``success_statuses``.
            ResponseParseError: Body does not match the expected shape.
        """
        status = response.status_code
        text = response.text
        log.debug("tracker_response", status=status, body=text)

        if status in success_statuses:
            if model is None:
                return None
            try:
                return model.model_validate_json(text)
            except ValidationError as e:
                raise ResponseParseError(
                    f"Unexpected success response: {e.error_count()} validation error(s)",
                    status_code=status,
                    response_text=text,
                ) from e

        try:
            error = ErrorResponse.model_validate_json(text)
        except ValidationError as e:
            raise ResponseParseError(
                "Unreadable error response",
                status_code=status,
                response_text=text,
            ) from e

        log.error("tracker_request_rejected", status=status, errors=error.error_messages)
        raise RemoteRejectedError("Tracker rejected the request", status_code=status, error=error)
