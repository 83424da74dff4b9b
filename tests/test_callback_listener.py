import logging
import unittest
from unittest.mock import AsyncMock, Mock, patch

import httpx
from fastapi import status

from netatmo_homie_bridge.callback_listener import CallbackListener, create_app, html_page
from netatmo_homie_bridge.exceptions import AuthorizationError, TransportError
from netatmo_homie_bridge.session import OAuth2Session


class TestHtmlPage(unittest.TestCase):
    def test_closes_connection(self):
        response = html_page(status.HTTP_404_NOT_FOUND, "Not Found", "Nothing to see here.")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.headers["connection"], "close")
        self.assertIn(b"Nothing to see here.", response.body)


class TestCallbackApp(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.session = Mock(spec=OAuth2Session)
        self.session.authorize = AsyncMock()
        self.logger = Mock(spec=logging.Logger)
        app = create_app(self.session, self.logger)
        self.client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://localhost:8080")

    async def asyncTearDown(self):
        await self.client.aclose()

    async def test_successful_callback(self):
        response = await self.client.get("/netatmo/auth?code=abc123")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.headers["connection"], "close")
        self.assertIn("Authorization Successful", response.text)
        self.session.authorize.assert_awaited_once_with("GET /netatmo/auth?code=abc123 HTTP/1.1")

    async def test_callback_keeps_all_query_parameters(self):
        await self.client.get("/netatmo/auth", params={"code": "abc123", "state": "xyz"})

        self.session.authorize.assert_awaited_once_with("GET /netatmo/auth?code=abc123&state=xyz HTTP/1.1")

    async def test_rejected_code_is_unauthorized(self):
        self.session.authorize.side_effect = AuthorizationError("Netatmo rejected the authorization code")

        response = await self.client.get("/netatmo/auth?code=abc123")

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertIn("Authorization Failed", response.text)
        self.logger.error.assert_called_once()

    async def test_unreachable_netatmo_is_unauthorized(self):
        self.session.authorize.side_effect = TransportError("timeout")

        response = await self.client.get("/netatmo/auth?code=abc123")

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertIn("could not be reached", response.text)

    async def test_callback_without_code_is_passed_to_session(self):
        self.session.authorize.side_effect = AuthorizationError("No authorization code in callback")

        response = await self.client.get("/netatmo/auth")

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.session.authorize.assert_awaited_once_with("GET /netatmo/auth HTTP/1.1")

    async def test_other_path_is_not_found(self):
        response = await self.client.get("/favicon.ico")

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.headers["connection"], "close")
        self.session.authorize.assert_not_awaited()

    async def test_other_method_is_not_found(self):
        response = await self.client.post("/netatmo/auth?code=abc123")

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.session.authorize.assert_not_awaited()

    async def test_api_docs_are_not_served(self):
        response = await self.client.get("/docs")

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class TestCallbackListener(unittest.IsolatedAsyncioTestCase):
    async def test_serve_runs_uvicorn_on_configured_address(self):
        session = Mock(spec=OAuth2Session)
        listener = CallbackListener(session, "127.0.0.1", 18080, logger=Mock(spec=logging.Logger))

        with patch("netatmo_homie_bridge.callback_listener.uvicorn.Server") as server_class:
            server_class.return_value.serve = AsyncMock()
            await listener.serve()

        config = server_class.call_args.args[0]
        self.assertIs(config.app, listener.app)
        self.assertEqual(config.host, "127.0.0.1")
        self.assertEqual(config.port, 18080)
        server_class.return_value.serve.assert_awaited_once()
