"""Local HTTP listener completing the Netatmo OAuth2 handshake.

After the operator grants access, Netatmo redirects the browser to the
callback URL. The FastAPI app serves that single route, hands the request line
to the session and answers with the outcome; anything else is a 404. uvicorn
runs the app inside the bridge's event loop.
"""

import logging

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import HTMLResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from netatmo_homie_bridge.config import CALLBACK_PATH
from netatmo_homie_bridge.exceptions import AuthorizationError, TransportError
from netatmo_homie_bridge.session import OAuth2Session

_PAGE = (
    "<html><head><title>{title}</title></head>"
    '<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 50px auto; padding: 20px;">'
    "<h1>{title}</h1><p>{message}</p></body></html>"
)


def html_page(status_code: int, title: str, message: str) -> HTMLResponse:
    """Render a short HTML outcome page and close the connection after it."""
    return HTMLResponse(
        _PAGE.format(title=title, message=message),
        status_code=status_code,
        headers={"Connection": "close"},
    )


def request_line(request: Request) -> str:
    """Rebuild the HTTP request line, e.g. "GET /netatmo/auth?code=abc HTTP/1.1"."""
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return f"{request.method} {target} HTTP/{request.scope.get('http_version', '1.1')}"


def create_app(session: OAuth2Session, logger: logging.Logger, path: str = CALLBACK_PATH) -> FastAPI:
    """Build the callback app for a session.

    Args:
        session: OAuth2 session that completes the handshake.
        logger: Logger for callback outcomes.
        path: The only path that is served.
    """
    app = FastAPI(title="Netatmo-to-Homie bridge", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(path, response_class=HTMLResponse)
    async def authorization_callback(request: Request) -> HTMLResponse:
        client = request.client.host if request.client else "unknown"
        logger.info("Received authorization callback from %s", client)
        try:
            await session.authorize(request_line(request))
        except AuthorizationError as e:
            logger.error("Authorization failed: %s", e)
            return html_page(
                status.HTTP_401_UNAUTHORIZED, "Authorization Failed", "The authorization could not be completed."
            )
        except TransportError as e:
            logger.error("Authorization failed, Netatmo unreachable: %s", e)
            return html_page(
                status.HTTP_401_UNAUTHORIZED,
                "Authorization Failed",
                "Netatmo could not be reached, please try again.",
            )
        return html_page(
            status.HTTP_200_OK,
            "Authorization Successful",
            "The bridge is now authorized. You can close this window.",
        )

    # AIDEV-NOTE: other methods on the callback path would be 405; they are answered like unknown paths
    @app.exception_handler(StarletteHTTPException)
    async def not_found(request: Request, exc: StarletteHTTPException) -> HTMLResponse:
        logger.info("Rejecting %s %s (%d)", request.method, request.url.path, exc.status_code)
        return html_page(status.HTTP_404_NOT_FOUND, "Not Found", "Nothing to see here.")

    return app


class CallbackListener:
    """HTTP listener for the OAuth2 authorization callback.

    Attributes:
        app: FastAPI app serving the callback route.
        host: Address to bind to.
        port: Port to bind to.
    """

    def __init__(
        self,
        session: OAuth2Session,
        host: str,
        port: int,
        logger: logging.Logger,
        path: str = CALLBACK_PATH,
    ) -> None:
        self.app = create_app(session, logger, path)
        self.host = host
        self.port = port
        self.logger = logger

    async def serve(self) -> None:
        """Serve the callback app until cancelled."""
        server = uvicorn.Server(
            uvicorn.Config(self.app, host=self.host, port=self.port, log_config=None, lifespan="off")
        )
        self.logger.info("Authorization callback listener binding to %s:%d", self.host, self.port)
        await server.serve()
