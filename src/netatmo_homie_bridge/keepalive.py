"""Background task keeping the Netatmo access token fresh during idle periods."""

import asyncio
import logging

from netatmo_homie_bridge.session import OAuth2Session

DEFAULT_KEEPALIVE_INTERVAL = 60


async def run_keepalive(
    session: OAuth2Session,
    logger: logging.Logger,
    interval: float = DEFAULT_KEEPALIVE_INTERVAL,
) -> None:
    """Ask the session for a keepalive, sleep for the returned interval, repeat.

    The session may shorten the interval; it is never allowed to exceed the
    configured one. Runs until cancelled; unexpected errors propagate.
    """
    logger.info("Token keepalive started, checking every %d seconds", interval)
    while True:
        next_interval = min(await session.keepalive(interval), interval)
        logger.debug("Next token keepalive in %.1f seconds", next_interval)
        await asyncio.sleep(next_interval)
