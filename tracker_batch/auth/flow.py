"""
OAuth2 authorization-code flow with a loopback redirect listener.

Flow Overview:
    1. If a cached token file exists and parses, it is used as-is.
    2. Otherwise a small FastAPI app is served by uvicorn on the configured
       loopback address, and the provider's authorization page is opened in
       the browser. The browser is launched from a worker thread, so a
       console browser that blocks until it exits does not stall the
       listener.
    3. The provider redirects the browser to ``/redirect?code=...``. The
       handler exchanges the code for a token at the provider's token
       endpoint and hands the result (token or error) to the waiting caller
       through a single-slot future.
    4. The wait is bounded by ``OAuthConfig.timeout`` from the moment the
       listener starts. On any outcome the listener is told to stop, and is
       cancelled if it does not stop within a short grace period.
    5. A fresh token is saved to the token store before it is returned.

Only the first redirect counts. Later requests are answered, but their
results are dropped.

Example:
    >>> flow = AuthorizationFlow(settings.oauth, TokenStore(settings.token_path))
    >>> token = await flow.authorize()
    >>> client = TrackerRestClient(token.access_token, settings.organization_id)
"""

import asyncio
import webbrowser
from collections.abc import Callable
from urllib.parse import urlencode

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse
from pydantic import ValidationError

from tracker_batch.auth.token_store import TokenStore
from tracker_batch.config.settings import REDIRECT_PATH, OAuthConfig
from tracker_batch.exceptions import (
    AuthConfigurationError,
    AuthorizationError,
    AuthRequestError,
    AuthTimeoutError,
    BrowserLaunchError,
    HandoffChannelError,
    MissingAuthorizationCodeError,
    TokenExchangeError,
    TokenLoadError,
)
from tracker_batch.models.domain import AccessToken

log = structlog.get_logger(__name__)

TOKEN_REQUEST_TIMEOUT = 30.0
LISTENER_SHUTDOWN_GRACE = 2.0

SUCCESS_PAGE = """\
<!DOCTYPE html>
<html>
  <head><title>tracker-batch</title></head>
  <body>
    <h1>Token received successfully</h1>
    <p>You can close this window and return to the terminal.</p>
  </body>
</html>
"""


class AuthorizationFlow:
    """Obtain one valid access token per run with as few interactive steps as possible.

    Attributes:
        oauth: OAuth application and listener settings.
        token_store: Cache for the access token.
    """

    def __init__(
        self,
        oauth: OAuthConfig,
        token_store: TokenStore,
        http_client: httpx.AsyncClient | None = None,
        open_browser: Callable[[str], bool] = webbrowser.open,
    ) -> None:
        """Initialize the flow.

        Args:
            oauth: OAuth settings (client credentials, redirect URI, listener
                address, timeout).
            token_store: Where the token is cached.
            http_client: Optional HTTP client for the code exchange (not
                closed by this class).
            open_browser: Callable opening a URL, returning False when no
                browser could be launched.
        """
        self.oauth = oauth
        self.token_store = token_store
        self._http_client = http_client
        self._open_browser = open_browser

    async def authorize(self) -> AccessToken:
        """Return a cached token or run the interactive flow and cache the result.

        Raises:
            AuthorizationError: If no token could be obtained.
            TokenPersistenceError: If the new token could not be saved.
        """
        cached = await self.read_cached_token()
        if cached is not None:
            log.info("cached_token_used", path=str(self.token_store.path))
            return cached

        token = await self.perform_authorization()
        await self.token_store.save(token)
        log.info("authorization_completed", expires_in=token.expires_in)
        return token

    async def read_cached_token(self) -> AccessToken | None:
        """Load the cached token, or None when there is no usable one."""
        if not self.token_store.exists():
            log.info("token_cache_missing", path=str(self.token_store.path))
            return None

        try:
            return await self.token_store.load()
        except TokenLoadError as e:
            log.warning("token_cache_unreadable", error=e.message)
            return None

    def build_authorization_url(self) -> str:
        """Build the provider's authorization page URL.

        Raises:
            AuthConfigurationError: If a required OAuth setting is empty.
        """
        self._require_settings()
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.oauth.client_id,
                "redirect_uri": self.oauth.redirect_uri,
            }
        )
        return f"{self.oauth.base_url.rstrip('/')}/authorize?{query}"

    async def perform_authorization(self) -> AccessToken:
        """Run the interactive authorization-code flow.

        Raises:
            AuthConfigurationError: Missing client id, secret or redirect URI.
            BrowserLaunchError: The authorization page could not be opened.
            AuthTimeoutError: No redirect result within ``oauth.timeout``.
            HandoffChannelError: The listener stopped without a result.
            MissingAuthorizationCodeError: The redirect had no ``code``.
            AuthRequestError: The code exchange request failed.
            TokenExchangeError: The token endpoint returned no token.
        """
        auth_url = self.build_authorization_url()

        loop = asyncio.get_running_loop()
        result: asyncio.Future[AccessToken] = loop.create_future()
        server = self._create_server(self.create_redirect_app(result))
        listener = asyncio.create_task(self._serve(server), name="oauth-redirect-listener")
        deadline = loop.time() + self.oauth.timeout
        log.info(
            "redirect_listener_started",
            host=self.oauth.listen_host,
            port=self.oauth.listen_port,
            timeout=self.oauth.timeout,
        )

        # console browsers block until they exit, and may be the ones following the redirect
        browser = asyncio.create_task(self._launch_browser(auth_url), name="oauth-browser-launch")
        try:
            return await self._wait_for_token(result, listener, browser, deadline)
        finally:
            self._abandon_browser(browser)
            await self._stop_listener(server, listener, result)

    def create_redirect_app(self, result: asyncio.Future[AccessToken]) -> FastAPI:
        """Build the app receiving the provider's redirect.

        Args:
            result: Single-slot handoff; the first token or error wins.
        """
        app = FastAPI(title="tracker-batch OAuth redirect", docs_url=None, redoc_url=None, openapi_url=None)

        @app.get(REDIRECT_PATH, response_class=HTMLResponse)
        async def handle_redirect(code: str | None = None) -> HTMLResponse:
            if not code:
                self._deliver(result, MissingAuthorizationCodeError("Authorization code not found in redirect"))
                raise HTTPException(status_code=400, detail="Authorization code not found")

            try:
                token = await self.exchange_code(code)
            except AuthorizationError as e:
                self._deliver(result, e)
                raise HTTPException(status_code=400, detail=e.message) from e

            self._deliver(result, token)
            return HTMLResponse(SUCCESS_PAGE)

        return app

    async def exchange_code(self, code: str) -> AccessToken:
        """Exchange an authorization code for an access token.

        Raises:
            AuthRequestError: The request could not be sent.
            TokenExchangeError: The response is not an access token.
        """
        url = f"{self.oauth.base_url.rstrip('/')}/token"
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.oauth.client_id,
            "client_secret": self.oauth.client_secret.get_secret_value(),
            "redirect_uri": self.oauth.redirect_uri,
        }

        client = self._http_client or httpx.AsyncClient(timeout=TOKEN_REQUEST_TIMEOUT)
        try:
            response = await client.post(url, data=data)
        except httpx.HTTPError as e:
            log.error("token_request_failed", url=url, error=str(e))
            raise AuthRequestError(f"Token request failed: {e}") from e
        finally:
            if client is not self._http_client:
                await client.aclose()

        try:
            return AccessToken.model_validate_json(response.text)
        except ValidationError as e:
            log.error("token_response_invalid", status=response.status_code, body=response.text)
            raise TokenExchangeError(
                f"Token endpoint returned no access token (HTTP {response.status_code}): {response.text[:200]}"
            ) from e

    def _require_settings(self) -> None:
        missing = [
            name
            for name, value in (
                ("client_id", self.oauth.client_id),
                ("client_secret", self.oauth.client_secret.get_secret_value()),
                ("redirect_uri", self.oauth.redirect_uri),
            )
            if not value
        ]
        if missing:
            raise AuthConfigurationError(f"Missing OAuth settings: {', '.join(missing)}")

    async def _launch_browser(self, url: str) -> None:
        log.info("opening_browser", url=url)
        try:
            opened = await asyncio.to_thread(self._open_browser, url)
        except (webbrowser.Error, OSError) as e:
            raise BrowserLaunchError(f"Failed to open {url}: {e}") from e
        if not opened:
            raise BrowserLaunchError(f"No browser available to open {url}")

    def _create_server(self, app: FastAPI) -> uvicorn.Server:
        config = uvicorn.Config(
            app,
            host=self.oauth.listen_host,
            port=self.oauth.listen_port,
            log_level="warning",
            lifespan="off",
        )
        return uvicorn.Server(config)

    @staticmethod
    async def _serve(server: uvicorn.Server) -> None:
        try:
            await server.serve()
        except SystemExit as e:
            # uvicorn exits the process when it cannot bind
            raise HandoffChannelError(
                f"Redirect listener failed to start on {server.config.host}:{server.config.port}"
            ) from e

    async def _wait_for_token(
        self,
        result: asyncio.Future[AccessToken],
        listener: asyncio.Task[None],
        browser: asyncio.Task[None],
        deadline: float,
    ) -> AccessToken:
        """Wait until ``deadline`` for a redirect result.

        A browser launch that finishes successfully is dropped from the wait
        set; one that fails ends the flow with ``BrowserLaunchError``.
        """
        loop = asyncio.get_running_loop()
        pending: set[asyncio.Future] = {result, listener, browser}

        while (remaining := deadline - loop.time()) > 0:
            done, _ = await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)

            if result in done:
                return result.result()

            if listener in done:
                error = None if listener.cancelled() else listener.exception()
                if isinstance(error, AuthorizationError):
                    raise error
                raise HandoffChannelError(
                    "Redirect listener stopped before an authorization result arrived"
                ) from error

            if browser in done:
                browser.result()
                pending.discard(browser)

        log.error("authorization_timeout", timeout=self.oauth.timeout)
        raise AuthTimeoutError("Timed out waiting for the OAuth redirect", timeout_seconds=self.oauth.timeout)

    @staticmethod
    def _deliver(result: asyncio.Future[AccessToken], outcome: AccessToken | AuthorizationError) -> None:
        if result.done():
            log.warning("redirect_result_dropped", outcome=type(outcome).__name__)
            return
        if isinstance(outcome, AccessToken):
            result.set_result(outcome)
        else:
            result.set_exception(outcome)

    @staticmethod
    def _abandon_browser(browser: asyncio.Task[None]) -> None:
        # the browser thread itself cannot be stopped; only the wait on it is
        if not browser.done():
            browser.cancel()
        elif not browser.cancelled() and browser.exception() is not None:
            log.debug("browser_launch_failed", error=str(browser.exception()))

    @staticmethod
    async def _stop_listener(
        server: uvicorn.Server,
        listener: asyncio.Task[None],
        result: asyncio.Future[AccessToken],
    ) -> None:
        if not result.done():
            result.cancel()
        server.should_exit = True
        if not listener.done():
            await asyncio.wait({listener}, timeout=LISTENER_SHUTDOWN_GRACE)

        if not listener.done():
            log.warning("redirect_listener_abandoned")
            listener.cancel()
        elif not listener.cancelled() and listener.exception() is not None:
            log.debug("redirect_listener_failed", error=str(listener.exception()))
