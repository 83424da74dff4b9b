"""API client for the Netatmo weather station API.

This module provides the OAuth2 token endpoint calls and the station data
retrieval used by the bridge. It knows nothing about session state; the
OAuth2 session decides when to call what.
"""

import logging
from typing import Any
from urllib.parse import urlencode

import httpx
from httpx_retries import Retry, RetryTransport

from netatmo_homie_bridge.models import Module, Token

BASE_URL = "https://api.netatmo.com"
AUTHORIZE_URL = f"{BASE_URL}/oauth2/authorize"
TOKEN_URL = f"{BASE_URL}/oauth2/token"
STATIONS_DATA_URL = f"{BASE_URL}/api/getstationsdata"

HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403

# OAuth error strings from the token endpoint and numeric API error codes
# (2 = invalid access token, 3 = access token expired) that mean "credentials rejected"
AUTH_ERROR_CODES = frozenset({"invalid_grant", "invalid_client", "unauthorized_client", 2, 3})


class NetatmoApiError(Exception):
    """Base exception for Netatmo API client errors."""


class NetatmoAuthError(NetatmoApiError):
    """Exception raised when Netatmo rejects a code or token."""


def create_http_client(timeout: float = 10.0) -> httpx.AsyncClient:
    """Create HTTP client with retry logic for the Netatmo API.

    Only idempotent requests are retried; token exchanges are never replayed.
    """
    retry = Retry(total=3, backoff_factor=0.5)
    return httpx.AsyncClient(timeout=timeout, transport=RetryTransport(retry=retry))


def _error_code(response: httpx.Response) -> Any:
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("code")
    return error


def validate_response(response: httpx.Response) -> dict[str, Any]:
    """Validate HTTP response and return parsed JSON data.

    Raises:
        NetatmoAuthError: If the code or token was rejected.
        NetatmoApiError: If the request failed for any other reason.
    """
    if response.is_success:
        try:
            data = response.json()
        except ValueError as err:
            raise NetatmoApiError(f"Invalid JSON in response: {err}") from err
        if not isinstance(data, dict):
            raise NetatmoApiError("Unexpected response body")
        return data

    error = _error_code(response)
    if response.status_code == HTTP_UNAUTHORIZED or (
        response.status_code in (HTTP_BAD_REQUEST, HTTP_FORBIDDEN) and error in AUTH_ERROR_CODES
    ):
        raise NetatmoAuthError(f"Credentials rejected: {response.status_code} ({error})")
    raise NetatmoApiError(f"Request failed: {response.status_code} ({error})")


def extract_modules(data: dict[str, Any]) -> list[Module]:
    """Flatten stations and their attached modules into one list.

    Raises:
        NetatmoApiError: If the body does not have the expected shape.
    """
    modules = []
    try:
        for station in data["body"]["devices"]:
            record = dict(station)
            if not record.get("module_name"):
                record["module_name"] = station.get("station_name", "")
            modules.append(Module.model_validate(record))
            modules.extend(Module.model_validate(sub) for sub in station.get("modules", []))
    except (KeyError, TypeError, ValueError) as err:
        raise NetatmoApiError(f"Invalid station data response: {err}") from err
    return modules


class NetatmoClient:
    """Thin async wrapper around the Netatmo endpoints the bridge needs.

    Attributes:
        http_client: Shared httpx client.
        client_id: Netatmo application client ID.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        logger: logging.Logger,
    ) -> None:
        self.http_client = http_client
        self.client_id = client_id
        self._client_secret = client_secret
        self.logger = logger

    def authorization_url(self, redirect_uri: str, scope: str, state: str) -> str:
        """Build the URL the operator visits to grant access."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": scope,
            "state": state,
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str, scope: str) -> Token:
        """Exchange an authorization code for a token pair.

        Raises:
            NetatmoAuthError: If the code is rejected.
            NetatmoApiError: If the request fails.
        """
        self.logger.debug("Exchanging authorization code for tokens")
        data = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "scope": scope,
            }
        )
        return self._token_from(data)

    async def refresh_token(self, refresh_token: str) -> Token:
        """Mint a new token pair from a refresh token.

        Raises:
            NetatmoAuthError: If the refresh token is rejected.
            NetatmoApiError: If the request fails.
        """
        self.logger.debug("Refreshing access token")
        data = await self._post_token({"grant_type": "refresh_token", "refresh_token": refresh_token})
        return self._token_from(data, previous_refresh_token=refresh_token)

    async def get_modules(self, access_token: str) -> list[Module]:
        """Fetch all stations and modules of the account.

        Raises:
            NetatmoAuthError: If the access token is rejected.
            NetatmoApiError: If the request fails.
        """
        try:
            response = await self.http_client.get(
                STATIONS_DATA_URL, headers={"Authorization": f"Bearer {access_token}"}
            )
        except httpx.HTTPError as err:
            raise NetatmoApiError(f"Station data request failed: {err}") from err
        modules = extract_modules(validate_response(response))
        self.logger.debug("Retrieved %d modules from Netatmo API", len(modules))
        return modules

    async def _post_token(self, form: dict[str, str]) -> dict[str, Any]:
        form = {**form, "client_id": self.client_id, "client_secret": self._client_secret}
        try:
            response = await self.http_client.post(TOKEN_URL, data=form)
        except httpx.HTTPError as err:
            raise NetatmoApiError(f"Token request failed: {err}") from err
        return validate_response(response)

    @staticmethod
    def _token_from(data: dict[str, Any], previous_refresh_token: str | None = None) -> Token:
        try:
            return Token.from_response(data, previous_refresh_token)
        except (KeyError, TypeError, ValueError) as err:
            raise NetatmoApiError(f"Invalid response from token endpoint: {err}") from err
