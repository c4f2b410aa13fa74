"""HTTP server for ``pocketauth serve``.

Builds the FastAPI application: OAuth2 error handlers plus the protocol,
userinfo, discovery and health routers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

    from pocketauth.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)


def create_app(server: AuthorizationServer | None = None) -> FastAPI:
    """Build the FastAPI application.

    When *server* is given it becomes the process-wide authorization server;
    otherwise one is built from settings on first request.
    """
    from fastapi import FastAPI, Request
    from fastapi.exceptions import RequestValidationError
    from fastapi.responses import JSONResponse

    import pocketauth
    from pocketauth.api.v1 import mount_v1_routers
    from pocketauth.api.v1.oauth2 import NO_STORE_HEADERS
    from pocketauth.oauth2 import server as server_mod
    from pocketauth.oauth2.errors import OAuthError, ServerError

    if server is not None:
        server_mod._server = server

    app = FastAPI(
        title="pocketauth",
        description="OAuth 2.0 / OpenID Connect authorization server.",
        version=pocketauth.__version__,
    )

    @app.exception_handler(OAuthError)
    async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
        headers = dict(NO_STORE_HEADERS)
        headers.update(exc.headers() or {})
        return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted({".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()})
        body = {
            "error": "invalid_request",
            "error_description": f"Invalid parameters: {', '.join(fields)}",
        }
        return JSONResponse(body, status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        # The server error middleware re-raises after this, so uvicorn logs the traceback
        logger.error("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path)
        return JSONResponse(ServerError().to_dict(), status_code=500)

    mount_v1_routers(app)
    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 3001,
    dev: bool = False,
) -> None:
    """Start the authorization server."""
    import uvicorn

    print("\n" + "=" * 50)
    print("POCKETAUTH AUTHORIZATION SERVER")
    print("=" * 50)
    print(f"\nListening on http://{host}:{port}  (docs: /docs)\n")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "pocketauth.api.serve:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        from pocketauth.oauth2.server import get_oauth_server

        # Build eagerly so bad keys or clients fail before the port opens
        uvicorn.run(create_app(get_oauth_server()), host=host, port=port)
