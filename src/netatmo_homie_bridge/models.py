"""Data models for the Netatmo-to-Homie bridge.

This module defines the OAuth token pair and the Netatmo module record as
returned by the station data endpoint.
"""

import re
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Netatmo access tokens live for three hours
DEFAULT_TOKEN_LIFETIME = 10800

DEVICE_TYPES = {
    "NAMain": "Base station",
    "NAModule1": "Outdoor module",
    "NAModule2": "Wind gauge",
    "NAModule3": "Rain gauge",
    "NAModule4": "Indoor module",
}

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]")


def slugify(device_type: str, module_name: str) -> str:
    """Derive the publish key of a module from its type and name.

    Lowercases "<type> <name>" and replaces every character outside [a-z0-9] by "-".
    """
    return _NON_SLUG_CHARS.sub("-", f"{device_type} {module_name}".lower())


class Token(BaseModel):
    """OAuth2 token pair held by the session.

    Only the refresh token survives a restart; the access token is re-minted
    from it on first use.

    Attributes:
        access_token: Short-lived bearer token for API calls.
        refresh_token: Long-lived token used to mint new access tokens.
        expires_at: Moment the access token stops being accepted (UTC).
    """

    access_token: str
    refresh_token: str
    expires_at: datetime

    @classmethod
    def from_response(cls, data: dict[str, Any], previous_refresh_token: str | None = None) -> "Token":
        """Create a Token from a token endpoint response body.

        Raises:
            KeyError: If access_token is missing, or refresh_token is missing with no fallback.
        """
        refresh_token = data.get("refresh_token") or previous_refresh_token
        if not refresh_token:
            raise KeyError("refresh_token")
        expires_in = int(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        return cls(
            access_token=data["access_token"],
            refresh_token=refresh_token,
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
        )

    @classmethod
    def from_refresh_token(cls, refresh_token: str) -> "Token":
        """Create an already expired token around a cached refresh token."""
        return cls(access_token="", refresh_token=refresh_token, expires_at=datetime.fromtimestamp(0, tz=UTC))

    def seconds_remaining(self) -> float:
        """Seconds until the access token expires; negative once expired."""
        return (self.expires_at - datetime.now(UTC)).total_seconds()

    def expires_within(self, seconds: float) -> bool:
        """Check if the access token is missing or expires within the given seconds."""
        return not self.access_token or self.seconds_remaining() <= seconds

    def expire(self) -> None:
        """Mark the access token as expired, keeping the refresh token."""
        self.expires_at = datetime.fromtimestamp(0, tz=UTC)


class Module(BaseModel):
    """A Netatmo sensor unit: a base station or one of its attached modules.

    Capability fields are optional; their presence decides which Homie
    properties the module gets.

    Attributes:
        id: Vendor-assigned MAC-style identifier.
        type: Netatmo device type, e.g. NAMain or NAModule1.
        module_name: User-assigned name of the module.
        rf_status: Radio signal quality (90=low, 60=highest).
        wifi_status: Wifi signal quality of a base station (86=bad, 56=good).
        reachable: Whether the module currently reports to its station.
        battery_percent: Remaining battery in percent.
        last_seen: Unix time the module was last seen (modules).
        last_status_store: Unix time of the last stored status (stations).
        data_type: Names of the measurement fields this module reports.
        dashboard_data: Latest measurement values keyed by field name.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id")
    type: str
    module_name: str = ""
    rf_status: int | None = None
    wifi_status: int | None = None
    reachable: bool | None = None
    battery_percent: int | None = None
    last_seen: int | None = None
    last_status_store: int | None = None
    data_type: list[str] = Field(default_factory=list)
    dashboard_data: dict[str, Any] | None = None

    @property
    def slug(self) -> str:
        """Publish key of this module."""
        return slugify(self.type, self.module_name)

    @property
    def display_name(self) -> str:
        """Human readable node name."""
        return f"{self.type} {self.module_name}"

    @property
    def type_name(self) -> str:
        """Human readable device type."""
        return DEVICE_TYPES.get(self.type, self.type)

    @property
    def seen_at(self) -> int | None:
        """Whichever last-seen timestamp the record carries."""
        return self.last_seen if self.last_seen is not None else self.last_status_store
