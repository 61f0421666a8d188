"""
Remote Gateway - REST API Routes
==================================
All HTTP API endpoints exposed to remote devices.

Route groups:
    /api/status, /api/login                 - Public
    /api/projects/*                         - Project and chapter access
    /api/settings                           - Host application settings
    /api/recent-projects, /api/tutorial     - Optional accessor extras

Everything except the public routes requires a bearer token (see auth.py).
Protected handlers are thin pass-throughs to the host's data accessor;
their only job is error normalization. Accessor failures are logged here
and returned as a generic 500 so host paths never reach the client.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from gateway.accessor import AccessorNotSupported, call_accessor
from gateway.auth import require_auth
from gateway.context import GatewayContext
from gateway.errors import AccessorFailure, ValidationError


logger = logging.getLogger(__name__)


# =============================================================================
# Request/Response Models (Pydantic)
# =============================================================================

class LoginRequest(BaseModel):
    """Login with the shared password."""
    password: str | None = Field(None, description="Remote-access password")

class LoginResponse(BaseModel):
    """JWT token returned after a successful login."""
    success: bool = True
    token: str
    message: str = "Login successful"

class StatusResponse(BaseModel):
    """Public liveness check."""
    status: str = "running"
    version: str
    connectedClients: int

class ChapterContentRequest(BaseModel):
    """Save a chapter's content."""
    content: Any = Field(..., description="Chapter content")


# =============================================================================
# Router Factory
# =============================================================================

def create_router(context: GatewayContext) -> APIRouter:
    """
    Create the API router with all endpoints.

    Args:
        context: Gateway state (credentials, tokens, registry, accessor).
                 The accessor is looked up per request, so the host may
                 attach or replace it while the server is running.

    Returns:
        APIRouter with public and protected endpoints registered.
    """
    router = APIRouter(prefix="/api")
    protected = APIRouter(dependencies=[Depends(require_auth(context.tokens))])

    async def delegate(operation: str, method_name: str, *args) -> Any:
        """Call an accessor method, mapping its failures to HTTP errors."""
        accessor = context.accessor
        if accessor is None:
            raise AccessorFailure("Data accessor not initialized")

        method = getattr(accessor, method_name, None)
        if method is None:
            raise HTTPException(status_code=501, detail=f"Operation not supported: {operation}")

        try:
            return await call_accessor(method, *args)
        except AccessorNotSupported as e:
            raise HTTPException(status_code=501, detail=str(e))
        except Exception:
            logger.exception("Accessor call failed: %s", operation)
            raise AccessorFailure(f"Failed to {operation}")

    # =========================================================================
    # PUBLIC ROUTES - No authentication required
    # =========================================================================

    @router.get("/status", response_model=StatusResponse)
    async def status():
        """Liveness check used by clients before logging in."""
        return StatusResponse(
            version=context.version,
            connectedClients=context.registry.count(),
        )

    @router.post("/login", response_model=LoginResponse)
    async def login(req: LoginRequest):
        """
        Exchange the shared password for a session token.

        A wrong password and an unconfigured gateway give the same 401.
        """
        if not req.password:
            raise ValidationError("Password is required")

        valid = await run_in_threadpool(context.credentials.verify_password, req.password)
        if not valid:
            logger.info("Remote login rejected")
            raise HTTPException(status_code=401, detail="Invalid password")

        logger.info("Remote login succeeded")
        return LoginResponse(token=context.tokens.issue())

    # =========================================================================
    # PROJECT ROUTES - Requires authentication
    # =========================================================================

    @protected.get("/projects")
    async def get_projects():
        return await delegate("load projects", "get_projects")

    @protected.get("/projects/{project_id}")
    async def get_project(project_id: str):
        return await delegate("load project", "get_project", project_id)

    @protected.get("/projects/{project_id}/chapters/{chapter_id}")
    async def get_chapter(project_id: str, chapter_id: str):
        return await delegate("load chapter", "get_chapter_content", project_id, chapter_id)

    @protected.put("/projects/{project_id}/chapters/{chapter_id}")
    async def save_chapter(project_id: str, chapter_id: str, req: ChapterContentRequest):
        """Last write wins; there is no conflict detection with local edits."""
        await delegate(
            "save chapter", "save_chapter_content", project_id, chapter_id, req.content
        )
        return {"success": True, "message": "Saved"}

    # =========================================================================
    # SETTINGS ROUTES - Requires authentication
    # =========================================================================

    @protected.get("/settings")
    async def get_settings():
        return await delegate("load settings", "get_settings")

    @protected.post("/settings")
    async def save_settings(body: dict[str, Any]):
        await delegate("save settings", "save_settings", body)
        return {"success": True, "message": "Settings saved"}

    # =========================================================================
    # EXTRAS - Optional accessor methods
    # =========================================================================

    @protected.get("/recent-projects")
    async def get_recent_projects():
        return await delegate("load recent projects", "get_recent_projects")

    @protected.get("/tutorial")
    async def get_tutorial_files():
        return await delegate("load tutorial files", "get_tutorial_files")

    router.include_router(protected)
    return router
