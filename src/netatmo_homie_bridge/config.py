"""Configuration management for the Netatmo-to-Homie bridge.

This module extends the base skill configuration with Netatmo and Homie settings.
Uses pydantic-settings with env_prefix for secure environment variable configuration.
"""

import pathlib
import ssl
from typing import Any
from urllib.parse import unquote, urlsplit

import private_assistant_commons as commons
from pydantic import Field, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

CALLBACK_PATH = "/netatmo/auth"
TOKEN_FILE_NAME = "refresh_token.txt"

MQTT_DEFAULT_PORT = 1883
MQTTS_DEFAULT_PORT = 8883


class NetatmoSettings(BaseSettings):
    """Netatmo API credentials, OAuth callback and polling settings.

    Environment variables (with NETATMO_ prefix):
        NETATMO_CLIENT_ID: Application client ID from the Netatmo developer portal.
        NETATMO_CLIENT_SECRET: Application client secret.
        NETATMO_LISTEN_HOST: Address the authorization callback listener binds to.
        NETATMO_LISTEN_PORT: Port the authorization callback listener binds to.
        NETATMO_REDIRECT_HOST: Host name the browser is redirected to after authorizing.
        NETATMO_REDIRECT_PORT: Port the browser is redirected to (default: listen port).
        NETATMO_DATA_DIR: Directory holding the persisted refresh token.
        NETATMO_POLL_INTERVAL: Seconds between two module polls.
        NETATMO_KEEPALIVE_INTERVAL: Seconds between two token keepalive checks.
        NETATMO_SCOPE: Space-separated API scopes.
    """

    model_config = SettingsConfigDict(env_prefix="NETATMO_")

    client_id: str
    client_secret: str
    listen_host: str = "0.0.0.0"  # noqa: S104
    listen_port: int = Field(default=8080, ge=1, le=65535)
    redirect_host: str = "localhost"
    redirect_port: int | None = Field(default=None, ge=1, le=65535)
    data_dir: pathlib.Path = pathlib.Path("data")
    poll_interval: PositiveInt = 5 * 60
    keepalive_interval: PositiveInt = 60
    scope: str = "read_station"

    @property
    def callback_url(self) -> str:
        """Externally visible URL of the authorization callback."""
        port = self.redirect_port or self.listen_port
        return f"http://{self.redirect_host}:{port}{CALLBACK_PATH}"

    @property
    def token_file(self) -> pathlib.Path:
        """Location of the persisted refresh token."""
        return self.data_dir / TOKEN_FILE_NAME


class HomieSettings(BaseSettings):
    """Identity of the published Homie device.

    Environment variables (with HOMIE_ prefix):
        HOMIE_DOMAIN: Homie base topic (default: homie).
        HOMIE_DEVICE_ID: Device id used in the topic tree (default: netatmo).
        HOMIE_DEVICE_NAME: Human readable device name.
        HOMIE_MQTT_URI: Optional broker URI, format "mqtt(s)://user:pass@hostname:port".
    """

    model_config = SettingsConfigDict(env_prefix="HOMIE_")

    domain: str = "homie"
    device_id: str = "netatmo"
    device_name: str = "Netatmo-to-Homie bridge"
    mqtt_uri: str | None = None


class BridgeConfig(commons.SkillConfig):
    """Configuration class for the bridge.

    Combines the base MQTT configuration with Netatmo and Homie settings.
    Netatmo and Homie values are loaded from environment variables with their
    respective prefixes (NETATMO_, HOMIE_).

    Attributes:
        netatmo: Netatmo API credentials, callback and polling settings.
        homie: Published device identity and optional broker URI.
    """

    # AIDEV-NOTE: default_factory delays instantiation until BridgeConfig is created,
    # avoiding import-time validation errors when env vars are not yet set.
    netatmo: NetatmoSettings = Field(default_factory=lambda: NetatmoSettings())
    homie: HomieSettings = Field(default_factory=lambda: HomieSettings())

    def mqtt_client_params(self) -> dict[str, Any]:
        """Build keyword arguments for aiomqtt.Client.

        A HOMIE_MQTT_URI takes precedence over mqtt_server_host/mqtt_server_port.

        Raises:
            ValueError: If the URI scheme is neither mqtt nor mqtts.
        """
        params: dict[str, Any] = {"identifier": self.client_id}
        if not self.homie.mqtt_uri:
            params["hostname"] = self.mqtt_server_host
            params["port"] = self.mqtt_server_port
            return params

        uri = urlsplit(self.homie.mqtt_uri)
        if uri.scheme not in ("mqtt", "mqtts"):
            raise ValueError(f"Unsupported MQTT URI scheme: {uri.scheme!r}")
        secure = uri.scheme == "mqtts"
        params["hostname"] = uri.hostname or self.mqtt_server_host
        params["port"] = uri.port or (MQTTS_DEFAULT_PORT if secure else MQTT_DEFAULT_PORT)
        if uri.username:
            params["username"] = unquote(uri.username)
        if uri.password:
            params["password"] = unquote(uri.password)
        if secure:
            params["tls_context"] = ssl.create_default_context()
        return params

    def masked_mqtt_target(self) -> str:
        """Broker location for log output, without credentials."""
        params = self.mqtt_client_params()
        return f"{params['hostname']}:{params['port']}"
