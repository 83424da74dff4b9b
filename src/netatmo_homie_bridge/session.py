"""OAuth2 session for the Netatmo API.

The session owns the single token pair of the bridge. It completes the
authorization-code handshake, refreshes the access token when it runs out,
persists every rotated refresh token and hands out module data.

Only one refresh may be in flight at a time: Netatmo invalidates a refresh
token as soon as it has been used, so two concurrent exchanges would leave the
loser holding a dead token. The ``refreshing`` flag is set before the exchange
yields control; anyone arriving while it is set gets RefreshInProgressError.
"""

import logging
import secrets
from urllib.parse import parse_qsl, urlsplit

from netatmo_homie_bridge.exceptions import (
    AuthorizationError,
    RefreshFailedError,
    RefreshInProgressError,
    TokenStorageError,
    TransportError,
    UnauthenticatedError,
)
from netatmo_homie_bridge.models import Module, Token
from netatmo_homie_bridge.netatmo_client import NetatmoApiError, NetatmoAuthError, NetatmoClient
from netatmo_homie_bridge.token_store import RefreshTokenStore

# Treat access tokens as expired this many seconds early
REFRESH_MARGIN = 60
# Back-off for callers that ran into a refresh in progress
REFRESH_RETRY_DELAY = 3
MIN_KEEPALIVE_INTERVAL = 5


def parse_callback_params(request_line: str) -> dict[str, str]:
    """Extract the query parameters from an HTTP request line.

    Args:
        request_line: First line of the request, e.g. "GET /netatmo/auth?code=abc HTTP/1.1".

    Raises:
        AuthorizationError: If the line has no request target.
    """
    parts = request_line.split()
    if len(parts) < 2:  # noqa: PLR2004
        raise AuthorizationError("Malformed request line")
    return dict(parse_qsl(urlsplit(parts[1]).query))


class OAuth2Session:
    """Token lifecycle of the bridge.

    Attributes:
        client: Netatmo API client used for all exchanges.
        token_store: Persistence for the refresh token.
        callback_url: Redirect URI registered for the authorization callback.
        scope: Requested API scopes.
        refreshing: True while a refresh exchange is in flight.
        authenticated: True once an exchange or refresh succeeded, until the token is revoked.
    """

    def __init__(
        self,
        client: NetatmoClient,
        token_store: RefreshTokenStore,
        callback_url: str,
        scope: str,
        logger: logging.Logger,
    ) -> None:
        self.client = client
        self.token_store = token_store
        self.callback_url = callback_url
        self.scope = scope
        self.logger = logger
        self.refreshing = False
        self.authenticated = False
        self._state = secrets.token_urlsafe(16)

        cached = token_store.load()
        self._token: Token | None = Token.from_refresh_token(cached) if cached else None
        if self._token is not None:
            self.logger.info("Using cached refresh token, access token will be refreshed on first use")

    @property
    def has_token(self) -> bool:
        """Whether a refresh token is available, cached or freshly issued."""
        return self._token is not None

    def get_authorization_url(self) -> str:
        """URL the operator has to visit to authorize the bridge."""
        return self.client.authorization_url(self.callback_url, self.scope, self._state)

    async def authorize(self, request_line: str) -> None:
        """Complete the authorization-code handshake from a callback request line.

        On failure the current token, if any, is left untouched.

        Raises:
            AuthorizationError: If the request has no usable code or Netatmo rejects it.
            TransportError: If Netatmo could not be reached.
        """
        params = parse_callback_params(request_line)
        if "error" in params:
            raise AuthorizationError(f"Authorization denied: {params['error']}")
        if "state" in params and params["state"] != self._state:
            raise AuthorizationError("Authorization state does not match")
        code = params.get("code")
        if not code:
            raise AuthorizationError("No authorization code in callback")

        try:
            token = await self.client.exchange_code(code, self.callback_url, self.scope)
        except NetatmoAuthError as e:
            raise AuthorizationError(f"Netatmo rejected the authorization code: {e}") from e
        except NetatmoApiError as e:
            raise TransportError(f"Authorization code exchange failed: {e}") from e

        self._install(token)
        self.logger.info("Authorization complete, token expires at %s", token.expires_at.isoformat())

    async def refresh(self) -> Token:
        """Exchange the refresh token for a new token pair.

        If an authorization completes while the exchange is in flight, its token
        pair wins: the outcome of the exchange is discarded and the new pair returned.

        Raises:
            RefreshInProgressError: If another refresh is already running.
            UnauthenticatedError: If there is no refresh token.
            RefreshFailedError: If Netatmo rejected the refresh token; the session is now unauthenticated.
            TransportError: If Netatmo could not be reached; the session is unchanged.
        """
        if self.refreshing:
            raise RefreshInProgressError("A token refresh is already in progress")
        current = self._token
        if current is None:
            raise UnauthenticatedError("Not authorized", self.get_authorization_url())

        self.refreshing = True
        try:
            token = await self.client.refresh_token(current.refresh_token)
        except NetatmoAuthError as e:
            if self._token is not current:
                return self._superseded()
            self._invalidate()
            raise RefreshFailedError(f"Netatmo rejected the refresh token: {e}", self.get_authorization_url()) from e
        except NetatmoApiError as e:
            if self._token is not current:
                return self._superseded()
            raise TransportError(f"Token refresh failed: {e}") from e
        finally:
            self.refreshing = False

        if self._token is not current:
            return self._superseded()
        self._install(token)
        self.logger.info("Access token refreshed, expires at %s", token.expires_at.isoformat())
        return token

    async def fetch_modules(self) -> list[Module]:
        """Fetch the current module list, refreshing the access token when needed.

        Raises:
            UnauthenticatedError: If the bridge has not been authorized.
            RefreshInProgressError: If a refresh is needed but another one is running.
            RefreshFailedError: If the refresh token was rejected.
            TransportError: If Netatmo could not be reached.
        """
        token = await self._valid_token()
        try:
            return await self._get_modules(token)
        except NetatmoAuthError:
            self.logger.warning("Netatmo rejected the access token, refreshing")
            token.expire()

        token = await self._valid_token()
        try:
            return await self._get_modules(token)
        except NetatmoAuthError as e:
            raise TransportError(f"Netatmo rejected a freshly refreshed access token: {e}") from e

    async def keepalive(self, min_interval: float) -> float:
        """Refresh the access token if it would expire before min_interval elapses.

        Args:
            min_interval: Seconds until the caller plans to ask again.

        Returns:
            Seconds to wait before the next call; never more than min_interval.
        """
        token = self._token
        if token is None or not token.expires_within(min_interval + REFRESH_MARGIN):
            return min_interval

        try:
            token = await self.refresh()
        except RefreshInProgressError:
            self.logger.debug("Keepalive found a refresh in progress, checking again shortly")
            return min(REFRESH_RETRY_DELAY, min_interval)
        except RefreshFailedError as e:
            self.logger.warning("Refresh token rejected, authorize again at %s", e.authorization_url)
            return min_interval
        except TransportError as e:
            self.logger.error("Keepalive refresh failed, retrying shortly: %s", e)
            return min(REFRESH_RETRY_DELAY, min_interval)

        due = token.seconds_remaining() - REFRESH_MARGIN
        return min(min_interval, max(MIN_KEEPALIVE_INTERVAL, due))

    async def _valid_token(self) -> Token:
        if self._token is None:
            raise UnauthenticatedError("Not authorized", self.get_authorization_url())
        if self._token.expires_within(REFRESH_MARGIN):
            return await self.refresh()
        return self._token

    async def _get_modules(self, token: Token) -> list[Module]:
        try:
            return await self.client.get_modules(token.access_token)
        except NetatmoAuthError:
            raise
        except NetatmoApiError as e:
            raise TransportError(f"Fetching modules failed: {e}") from e

    def _superseded(self) -> Token:
        self.logger.info("Authorization completed during token refresh, discarding the refresh result")
        if self._token is None:
            raise UnauthenticatedError("Not authorized", self.get_authorization_url())
        return self._token

    def _install(self, token: Token) -> None:
        self._token = token
        self.authenticated = True
        try:
            self.token_store.save(token.refresh_token)
        except TokenStorageError as e:
            self.logger.error("Could not persist refresh token, continuing in memory: %s", e)

    def _invalidate(self) -> None:
        self._token = None
        self.authenticated = False
        try:
            self.token_store.delete()
        except TokenStorageError as e:
            self.logger.error("Could not delete revoked refresh token: %s", e)
