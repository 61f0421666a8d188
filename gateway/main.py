"""
Remote Gateway - FastAPI Application
======================================
Creates and configures the FastAPI web application served to remote devices.

Responsibilities:
    - Create the FastAPI app instance with CORS and metadata
    - Reject request bodies above the configured size ceiling
    - Mount static file serving for the UI bundle (assets, css, js, fonts, icon)
    - Render the remote UI document at GET /
    - Register API routes and the WebSocket endpoint
    - Shape every error as {"error": "<message>"}

Architecture:
    All per-gateway state lives on a GatewayContext passed in by the
    caller (normally GatewayServer) and stored on app.state.context.
    Static assets are unauthenticated because the UI shell must load
    before the user can log in. API endpoints are prefixed with /api/.
    WebSocket is available at /ws.
"""

import os

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from gateway.bootstrap import UIBootstrapper
from gateway.config import DEFAULTS
from gateway.context import GatewayContext
from gateway.errors import GatewayError
from gateway.routes import create_router


PROJECT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# URL prefix -> directory under the UI root
STATIC_MOUNTS = {
    "/assets": "assets",
    "/css": "css",
    "/js": "js",
    "/fonts": os.path.join("assets", "fonts"),
    "/icon": "icon",
}


def create_app(
    context: GatewayContext | None = None,
    settings: dict | None = None,
    project_dir: str | None = None,
) -> FastAPI:
    """
    Application factory: create and configure the FastAPI instance.

    Args:
        context:     Gateway state. A fresh one is created if None.
        settings:    The 'web' section of the configuration; missing keys
                     fall back to DEFAULTS["web"].
        project_dir: Root directory holding web/ (UI shell and templates).
                     If None, auto-detected from this file's location.

    Returns:
        Configured FastAPI application ready to run with uvicorn.
    """
    # -- Resolve settings and directories --------------------------------------
    web = dict(DEFAULTS["web"])
    web.update(settings or {})

    if project_dir is None:
        project_dir = PROJECT_DIR
    web_dir = os.path.join(project_dir, "web")
    templates_dir = os.path.join(web_dir, "templates")
    ui_dir = web.get("ui_dir") or web_dir

    if context is None:
        context = GatewayContext.create(auth_grace_seconds=web["auth_grace_seconds"])

    max_body_bytes = int(web["max_body_mb"] * 1024 * 1024)
    bootstrapper = UIBootstrapper(ui_dir, templates_dir, title=web["title"])

    # -- Create FastAPI app ----------------------------------------------------
    app = FastAPI(
        title="Remote Gateway",
        description="Remote access gateway for the desktop writing application",
        version=context.version,
        docs_url=None,
        redoc_url=None,
    )
    app.state.context = context
    app.state.bootstrapper = bootstrapper

    # -- Body size ceiling -----------------------------------------------------
    # Registered before CORS so that CORS wraps it and 413s carry CORS headers.
    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=max_body_bytes)

    # -- CORS middleware -------------------------------------------------------
    # Any origin: the companion client runs on arbitrary LAN devices.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Error envelope --------------------------------------------------------
    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _describe(exc)})

    # -- Register API routes ---------------------------------------------------
    app.include_router(create_router(context))

    # -- WebSocket endpoint ----------------------------------------------------
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Realtime channel; clients must authenticate with their token."""
        await context.channel.handle(websocket)

    # -- Mount static assets ---------------------------------------------------
    for prefix, subdir in STATIC_MOUNTS.items():
        directory = os.path.join(ui_dir, subdir)
        if os.path.isdir(directory):
            app.mount(prefix, StaticFiles(directory=directory), name=prefix.strip("/"))

    # -- Page routes -----------------------------------------------------------
    @app.get("/", response_class=HTMLResponse)
    def index():
        """The desktop UI, adapted for remote use (see bootstrap.py)."""
        content, status_code = bootstrapper.render()
        return HTMLResponse(content=content, status_code=status_code)

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=204)

    return app


class BodySizeLimitMiddleware:
    """
    Reject request bodies larger than `max_body_bytes` with 413.

    A declared Content-Length is checked up front. The bytes actually
    received are counted as well, so chunked uploads without a length
    are cut off once they pass the ceiling.
    """

    def __init__(self, app: ASGIApp, max_body_bytes: int):
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        if length is not None:
            try:
                declared = int(length)
            except ValueError:
                response = JSONResponse(status_code=400, content={"error": "Invalid Content-Length"})
                await response(scope, receive, send)
                return
            if declared > self.max_body_bytes:
                response = JSONResponse(status_code=413, content={"error": "Request body too large"})
                await response(scope, receive, send)
                return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    # Raised inside the endpoint's body read; the app's
                    # HTTPException handler turns it into {"error": ...}.
                    raise HTTPException(status_code=413, detail="Request body too large")
            return message

        await self.app(scope, limited_receive, send)


def _describe(exc: RequestValidationError) -> str:
    """One-line description of the first validation error."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    return f"Invalid request: {location} {message}".strip() if location else f"Invalid request: {message}"
