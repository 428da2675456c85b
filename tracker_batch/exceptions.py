"""Custom exception hierarchy for tracker-batch.

This module defines a structured exception hierarchy that lets the CLI tell
apart authorization failures, remote API failures, local persistence
failures and invalid batch files, and report each with a useful message.

Exception Hierarchy:
    TrackerBatchError (base)
    ├── ConfigurationError
    ├── AuthorizationError
    │   ├── AuthConfigurationError
    │   ├── AuthRequestError
    │   ├── AuthTimeoutError
    │   ├── HandoffChannelError
    │   ├── TokenLoadError
    │   ├── BrowserLaunchError
    │   ├── MissingAuthorizationCodeError
    │   └── TokenExchangeError
    ├── RemoteCallError
    │   ├── RemoteTransportError
    │   ├── ResponseParseError
    │   └── RemoteRejectedError
    ├── PersistenceError
    │   ├── TokenPersistenceError
    │   └── CheckpointError
    └── BatchValidationError
        ├── BatchReadError
        ├── BatchParseError
        └── InvalidBatchError
            ├── EmptyBatchError
            ├── MissingRequiredFieldsError
            └── EmptyUpdateError

Example Usage:
    >>> from tracker_batch.exceptions import BatchReadError
    >>> try:
    ...     content = path.read_text()
    ... except OSError as e:
    ...     raise BatchReadError(f"Cannot read batch file: {path}") from e
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tracker_batch.models.domain import ErrorResponse


class TrackerBatchError(Exception):
    """Base exception for all tracker-batch errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(TrackerBatchError):
    """Configuration-related errors.

    Examples:
        - Configuration file not found
        - Invalid YAML syntax
        - Missing required configuration fields
    """

    pass


# =============================================================================
# Authorization Errors
# =============================================================================


class AuthorizationError(TrackerBatchError):
    """Base exception for failures while obtaining an access token."""

    pass


class AuthConfigurationError(AuthorizationError):
    """A required OAuth setting (client id, secret, redirect URI) is missing."""

    pass


class AuthRequestError(AuthorizationError):
    """HTTP transport failure while exchanging the authorization code."""

    pass


class AuthTimeoutError(AuthorizationError):
    """No authorization result arrived before the deadline.

    Attributes:
        timeout_seconds: The timeout duration that was exceeded
    """

    def __init__(self, message: str, timeout_seconds: float | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message
            timeout_seconds: The timeout that was exceeded
        """
        self.timeout_seconds = timeout_seconds
        full_message = message
        if timeout_seconds is not None and "timeout" not in message.lower():
            full_message = f"{message} (timeout: {timeout_seconds}s)"
        super().__init__(full_message)
        self.message = message


class HandoffChannelError(AuthorizationError):
    """The redirect listener went away without delivering a result."""

    pass


class TokenLoadError(AuthorizationError):
    """The cached token file exists but could not be read or parsed."""

    pass


class BrowserLaunchError(AuthorizationError):
    """The authorization URL could not be opened in a browser."""

    pass


class MissingAuthorizationCodeError(AuthorizationError):
    """The OAuth redirect did not carry a ``code`` query parameter."""

    pass


class TokenExchangeError(AuthorizationError):
    """The token endpoint answered with a body that is not an access token."""

    pass


# =============================================================================
# Remote Call Errors
# =============================================================================


class RemoteCallError(TrackerBatchError):
    """Base exception for failed calls to the Tracker REST API."""

    pass


class RemoteTransportError(RemoteCallError):
    """The request could not be sent or the response could not be read."""

    pass


class ResponseParseError(RemoteCallError):
    """The response body did not match the expected shape.

    Attributes:
        status_code: HTTP status code of the response
        response_text: Raw response body
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_text = response_text

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"
        super().__init__(full_message)
        self.message = message


class RemoteRejectedError(RemoteCallError):
    """The API answered with a status outside the success set.

    Attributes:
        status_code: HTTP status code of the response
        error: Parsed error payload returned by the API
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        error: ErrorResponse | None = None,
    ) -> None:
        self.status_code = status_code
        self.error = error

        full_message = f"{message} (HTTP {status_code})"
        if error is not None:
            details = list(error.error_messages)
            details.extend(f"{field}: {text}" for field, text in error.errors.items())
            if details:
                full_message = f"{full_message}: {'; '.join(details)}"
        super().__init__(full_message)
        self.message = message


# =============================================================================
# Persistence Errors
# =============================================================================


class PersistenceError(TrackerBatchError):
    """Writing local state (token or batch checkpoint) failed."""

    pass


class TokenPersistenceError(PersistenceError):
    """The freshly obtained access token could not be saved."""

    pass


class CheckpointError(PersistenceError):
    """The batch checkpoint could not be written after a remote mutation.

    The remote mutation has already been applied, so a rerun from the stale
    checkpoint will send it again.
    """

    pass


# =============================================================================
# Batch Validation Errors
# =============================================================================


class BatchValidationError(TrackerBatchError):
    """Base exception for batch files that cannot be loaded."""

    pass


class BatchReadError(BatchValidationError):
    """The batch file could not be read."""

    pass


class BatchParseError(BatchValidationError):
    """The batch file is not valid JSON or does not match the batch shape."""

    pass


class InvalidBatchError(BatchValidationError):
    """The batch parsed but is structurally invalid."""

    pass


class EmptyBatchError(InvalidBatchError):
    """The batch contains no mutations at all."""

    pass


class MissingRequiredFieldsError(InvalidBatchError):
    """A creation request has an empty queue or summary."""

    pass


class EmptyUpdateError(InvalidBatchError):
    """An update request carries no patch fields."""

    pass
