import asyncio
import logging
import unittest
from unittest.mock import AsyncMock, Mock, patch

from netatmo_homie_bridge.keepalive import run_keepalive
from netatmo_homie_bridge.session import OAuth2Session


class StopLoop(Exception):
    pass


class TestRunKeepalive(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.session = Mock(spec=OAuth2Session)
        self.logger = Mock(spec=logging.Logger)

    async def run_cycles(self, cycles: int) -> AsyncMock:
        sleep = AsyncMock(side_effect=[None] * (cycles - 1) + [StopLoop()])
        with patch("netatmo_homie_bridge.keepalive.asyncio.sleep", sleep), self.assertRaises(StopLoop):
            await run_keepalive(self.session, self.logger, interval=60)
        return sleep

    async def test_sleeps_for_interval_returned_by_session(self):
        self.session.keepalive = AsyncMock(side_effect=[60, 3, 30])

        sleep = await self.run_cycles(3)

        self.assertEqual([c.args[0] for c in sleep.await_args_list], [60, 3, 30])
        self.session.keepalive.assert_awaited_with(60)

    async def test_never_sleeps_longer_than_configured_interval(self):
        self.session.keepalive = AsyncMock(return_value=600)

        sleep = await self.run_cycles(1)

        sleep.assert_awaited_once_with(60)

    async def test_unexpected_error_propagates(self):
        self.session.keepalive = AsyncMock(side_effect=RuntimeError("boom"))

        with self.assertRaises(RuntimeError):
            await run_keepalive(self.session, self.logger, interval=60)

    async def test_cancellation_stops_loop(self):
        self.session.keepalive = AsyncMock(return_value=60)
        task = asyncio.create_task(run_keepalive(self.session, self.logger, interval=60))
        await asyncio.sleep(0)

        task.cancel()

        with self.assertRaises(asyncio.CancelledError):
            await task
