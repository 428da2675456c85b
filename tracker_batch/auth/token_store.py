"""File-backed cache for the OAuth access token.

The token is stored as JSON (``access_token`` and ``expires_in``) at a fixed
path. A cached token is trusted as-is; its expiry is recorded but never
checked.
"""

import contextlib
import json
from pathlib import Path

import aiofiles
import structlog
from pydantic import ValidationError

from tracker_batch.exceptions import TokenLoadError, TokenPersistenceError
from tracker_batch.models.domain import AccessToken

log = structlog.get_logger(__name__)


class TokenStore:
    """Persist and load a single access token.

    Example:
        >>> store = TokenStore("token.json")
        >>> if store.exists():
        ...     token = await store.load()
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        """Check whether a token file is present (its content is not read)."""
        return self.path.is_file()

    async def load(self) -> AccessToken:
        """Read the cached token.

        Raises:
            TokenLoadError: If the file cannot be read or does not hold a token.
        """
        try:
            async with aiofiles.open(self.path) as f:
                content = await f.read()
        except OSError as e:
            raise TokenLoadError(f"Cannot read token file {self.path}: {e}") from e

        try:
            return AccessToken.model_validate_json(content)
        except ValidationError as e:
            raise TokenLoadError(f"Token file {self.path} is not a valid token") from e

    async def save(self, token: AccessToken) -> None:
        """Write the token, replacing any previous one.

        The token is written to a temporary file first and renamed over the
        target, so a crash never leaves a half-written token behind.

        Raises:
            TokenPersistenceError: If the file cannot be written.
        """
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w") as f:
                await f.write(json.dumps(token.model_dump()))
            tmp_path.replace(self.path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            raise TokenPersistenceError(f"Cannot save token to {self.path}: {e}") from e

        log.info("token_saved", path=str(self.path), expires_in=token.expires_in)
