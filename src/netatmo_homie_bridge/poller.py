"""Periodic module polling and topology change detection."""

import asyncio
import logging

from netatmo_homie_bridge.device_model import DeviceSynchronizer, index_by_slug
from netatmo_homie_bridge.exceptions import (
    RefreshInProgressError,
    TransportError,
    UnauthenticatedError,
)
from netatmo_homie_bridge.models import Module
from netatmo_homie_bridge.session import REFRESH_RETRY_DELAY, OAuth2Session

DEFAULT_POLL_INTERVAL = 5 * 60
# Retries per cycle while another task holds the token refresh
MAX_REFRESH_RETRIES = 3


class ModulePoller:
    """Fetches the module list on a cadence and drives the synchronizer.

    The device is rebuilt only when the set of slugs changes; otherwise the
    existing tree is kept and only values are pushed.

    Attributes:
        session: OAuth2 session providing module data.
        synchronizer: Owner of the published device.
        poll_interval: Seconds between two cycles.
        modules: Module list of the last successful poll, keyed by slug.
    """

    def __init__(
        self,
        session: OAuth2Session,
        synchronizer: DeviceSynchronizer,
        logger: logging.Logger,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        retry_delay: float = REFRESH_RETRY_DELAY,
        max_retries: int = MAX_REFRESH_RETRIES,
    ) -> None:
        self.session = session
        self.synchronizer = synchronizer
        self.logger = logger
        self.poll_interval = poll_interval
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self.modules: dict[str, Module] = {}

    async def run(self) -> None:
        """Poll immediately, then every poll_interval, until cancelled."""
        while True:
            await self.poll_once()
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> bool:
        """Run a single poll cycle.

        Returns:
            True if the published device was updated, False if the cycle was skipped.
        """
        self.logger.debug("Starting module update")
        modules = await self._fetch()
        if modules is None:
            return False
        await self.apply(modules)
        return True

    async def apply(self, modules: list[Module]) -> bool:
        """Reconcile the published device with a freshly fetched module list.

        Returns:
            True if the topology changed and the device was rebuilt.
        """
        indexed = index_by_slug(modules, self.logger)
        changed = self.synchronizer.device is None or set(indexed) != set(self.modules)
        self.modules = indexed

        if changed:
            self.logger.info("Module list changed, updating device")
            await self.synchronizer.rebuild(indexed.values())
        else:
            self.logger.debug("Module list is unchanged")

        await self.synchronizer.update(indexed.values())
        return changed

    async def _fetch(self) -> list[Module] | None:
        for attempt in range(self.max_retries + 1):
            try:
                return await self.session.fetch_modules()
            except RefreshInProgressError:
                if attempt == self.max_retries:
                    break
                self.logger.debug("Token refresh in progress, retrying in %s seconds", self.retry_delay)
                await asyncio.sleep(self.retry_delay)
            except UnauthenticatedError as e:
                self.logger.warning("Bridge is not authorized, visit %s to authorize", e.authorization_url)
                return None
            except TransportError as e:
                self.logger.error("Failed to update modules: %s", e)
                return None

        self.logger.warning("Token refresh still in progress after %d retries, skipping this cycle", self.max_retries)
        return None
