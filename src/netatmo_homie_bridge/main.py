"""Main entry point for the Netatmo-to-Homie bridge.

This module provides the CLI interface and initialization logic for the bridge.
Handles configuration loading, the OAuth2 session, the authorization callback
listener, token keepalive and the MQTT publishing loop.
"""

import asyncio
import functools
import logging
import pathlib
from typing import Annotated

import aiomqtt
import typer
from private_assistant_commons import skill_config, skill_logger

from netatmo_homie_bridge import config, homie
from netatmo_homie_bridge.callback_listener import CallbackListener
from netatmo_homie_bridge.device_model import DeviceSynchronizer
from netatmo_homie_bridge.keepalive import run_keepalive
from netatmo_homie_bridge.netatmo_client import NetatmoClient, create_http_client
from netatmo_homie_bridge.poller import ModulePoller
from netatmo_homie_bridge.session import OAuth2Session
from netatmo_homie_bridge.token_store import RefreshTokenStore

MQTT_RETRY_INTERVAL = 5

app = typer.Typer()


@app.command()
def main(config_path: Annotated[pathlib.Path, typer.Argument(envvar="NETATMO_HOMIE_BRIDGE_CONFIG_PATH")]) -> None:
    """Start the bridge with the given configuration.

    Args:
        config_path: Path to YAML configuration file or from NETATMO_HOMIE_BRIDGE_CONFIG_PATH env var.
    """
    asyncio.run(start_bridge(config_path))


def log_configuration(config_obj: config.BridgeConfig, logger: logging.Logger) -> None:
    """Log the effective configuration with secrets masked."""
    logger.info("Bridge configuration:")
    logger.info("NETATMO_CLIENT_ID: ********")
    logger.info("NETATMO_CLIENT_SECRET: ********")
    logger.info("NETATMO_LISTEN: %s:%d", config_obj.netatmo.listen_host, config_obj.netatmo.listen_port)
    logger.info("NETATMO_CALLBACK_URL: %s", config_obj.netatmo.callback_url)
    logger.info("NETATMO_DATA_DIR: %s", config_obj.netatmo.data_dir)
    logger.info("NETATMO_POLL_INTERVAL: %d seconds", config_obj.netatmo.poll_interval)
    logger.info("NETATMO_KEEPALIVE_INTERVAL: %d seconds", config_obj.netatmo.keepalive_interval)
    logger.info("HOMIE_DOMAIN: %s", config_obj.homie.domain)
    logger.info("HOMIE_DEVICE_ID: %s", config_obj.homie.device_id)
    logger.info("HOMIE_DEVICE_NAME: %s", config_obj.homie.device_name)
    logger.info("MQTT broker: %s", config_obj.masked_mqtt_target())


async def start_bridge(config_path: pathlib.Path) -> None:
    """Initialize and run the bridge until a fatal error occurs.

    Args:
        config_path: Path to the YAML configuration file or directory.
    """
    logger = skill_logger.SkillLogger.get_logger("netatmo_homie_bridge")
    logger.info("Starting Netatmo-to-Homie bridge")

    config_obj = skill_config.load_config(config_path, config.BridgeConfig)
    log_configuration(config_obj, logger)

    token_store = RefreshTokenStore(config_obj.netatmo.token_file, logger)

    async with create_http_client() as http_client:
        client = NetatmoClient(
            http_client, config_obj.netatmo.client_id, config_obj.netatmo.client_secret, logger=logger
        )
        session = OAuth2Session(
            client,
            token_store,
            callback_url=config_obj.netatmo.callback_url,
            scope=config_obj.netatmo.scope,
            logger=logger,
        )
        if not session.has_token:
            logger.warning("Bridge is not authorized, visit %s to authorize", session.get_authorization_url())

        listener = CallbackListener(
            session, config_obj.netatmo.listen_host, config_obj.netatmo.listen_port, logger=logger
        )

        # AIDEV-NOTE: any exception escaping a task ends the TaskGroup and with it the process
        async with asyncio.TaskGroup() as tg:
            tg.create_task(listener.serve())
            tg.create_task(run_keepalive(session, logger, interval=config_obj.netatmo.keepalive_interval))
            tg.create_task(publish_modules(session, config_obj, logger))

    logger.info("Netatmo-to-Homie bridge exited")


async def publish_modules(
    session: OAuth2Session,
    config_obj: config.BridgeConfig,
    logger: logging.Logger,
    retry_interval: int = MQTT_RETRY_INTERVAL,
) -> None:
    """Poll modules and publish them, reconnecting to the broker when the connection drops.

    On every (re)connection the device of the previous connection is cleared
    from the broker and rebuilt on the first poll.
    """
    homie_settings = config_obj.homie
    client = aiomqtt.Client(
        **config_obj.mqtt_client_params(),
        will=homie.last_will(homie_settings.domain, homie_settings.device_id),
        logger=logger,
    )
    synchronizer = DeviceSynchronizer(
        functools.partial(homie.HomieDevice, client, logger=logger),
        domain=homie_settings.domain,
        device_id=homie_settings.device_id,
        device_name=homie_settings.device_name,
        logger=logger,
    )
    while True:
        try:
            async with client as mqtt_client:
                logger.info("Connected successfully to MQTT broker.")
                await synchronizer.reconnect(functools.partial(homie.HomieDevice, mqtt_client, logger=logger))
                poller = ModulePoller(session, synchronizer, logger, poll_interval=config_obj.netatmo.poll_interval)
                await poller.run()
        except aiomqtt.MqttError:
            logger.error("Connection lost; reconnecting in %d seconds...", retry_interval, exc_info=True)
            await asyncio.sleep(retry_interval)


if __name__ == "__main__":
    app()
