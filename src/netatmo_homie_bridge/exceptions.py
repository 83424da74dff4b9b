"""Exception hierarchy for the Netatmo-to-Homie bridge.

The OAuth2 session translates vendor and storage failures into these classes so
callers can decide between operator action, retry and giving up on a cycle.
"""


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class UnauthenticatedError(BridgeError):
    """No usable token; the operator has to visit the authorization URL."""

    def __init__(self, message: str, authorization_url: str) -> None:
        super().__init__(message)
        self.authorization_url = authorization_url


class RefreshFailedError(UnauthenticatedError):
    """The refresh token was rejected and the persisted copy has been dropped."""


class RefreshInProgressError(BridgeError):
    """Another task is exchanging the refresh token; retry shortly."""


class TransportError(BridgeError):
    """The vendor API could not be reached or answered with garbage."""


class AuthorizationError(BridgeError):
    """The authorization callback could not be turned into a token pair."""


class TokenStorageError(BridgeError):
    """Reading, writing or deleting the persisted refresh token failed."""
