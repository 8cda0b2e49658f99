"""FastAPI application for the citekey bridge.

Endpoints (served at the root and under the configured prefix, ``/zotxt``
by default):
- GET /items - Items chosen by key, easykey, citekey, collection, selection, all or q
- GET /search - Free-text search
- GET /complete - Easy key completion
- POST /bibliography - Citation clusters and bibliography
- GET /select - Reveal an item in Zotero
- GET /version, /locales, /styles - Metadata
- GET /health - Liveness probe
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import Response

from .. import __version__
from ..bridge import BridgeServices, CitekeyBridge
from ..config import BridgeConfig
from ..models import ResponseTriple
from .models import HealthResponse, HealthStatus

logger = logging.getLogger(__name__)

# Global state
_bridge: Optional[CitekeyBridge] = None
_config: Optional[BridgeConfig] = None


def _get_bridge() -> CitekeyBridge:
    if _bridge is None:
        raise HTTPException(status_code=503, detail="Bridge not initialized")
    return _bridge


def _respond(triple: ResponseTriple) -> Response:
    return Response(
        content=triple.body,
        status_code=triple.status,
        media_type=triple.content_type,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Opens the Zotero backends from configuration unless services were
    injected through ``create_app``, and releases them on shutdown.
    """
    global _bridge

    logger.info("Citekey bridge starting...")
    if _bridge is None:
        from ..backends import open_services

        config = _config or BridgeConfig()
        _bridge = CitekeyBridge(open_services(config), config)
        logger.info("Zotero backends opened")

    yield

    logger.info("Citekey bridge shutting down...")
    if _bridge is not None:
        await _bridge.close()
    logger.info("Citekey bridge stopped")


def _build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/items", tags=["Items"])
    async def items(request: Request) -> Response:
        """Items chosen by one selector, in the requested format."""
        return _respond(await _get_bridge().items(dict(request.query_params)))

    @router.get("/search", tags=["Items"])
    async def search(request: Request) -> Response:
        """Free-text search in the library."""
        return _respond(await _get_bridge().search(dict(request.query_params)))

    @router.get("/complete", tags=["Items"])
    async def complete(request: Request) -> Response:
        """Easy keys matching a partially typed key."""
        return _respond(await _get_bridge().complete(dict(request.query_params)))

    @router.post("/bibliography", tags=["Citations"])
    async def bibliography(request: Request) -> Response:
        """Render citation clusters and a bibliography."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None
        return _respond(await _get_bridge().bibliography(body))

    @router.get("/select", tags=["Items"])
    async def select(request: Request) -> Response:
        """Reveal one item in the Zotero window."""
        return _respond(await _get_bridge().select(dict(request.query_params)))

    @router.get("/version", tags=["Metadata"])
    async def version() -> Response:
        return _respond(await _get_bridge().version())

    @router.get("/locales", tags=["Metadata"])
    async def locales() -> Response:
        return _respond(await _get_bridge().locales())

    @router.get("/styles", tags=["Metadata"])
    async def styles() -> Response:
        return _respond(await _get_bridge().styles_list())

    @router.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Liveness probe - check if the service is running."""
        if _bridge is None:
            return HealthResponse(status=HealthStatus.UNHEALTHY, version=__version__)
        return HealthResponse(
            status=HealthStatus.HEALTHY,
            version=__version__,
            style_engines=len(_bridge.styles),
        )

    return router


def create_app(
    services: Optional[BridgeServices] = None,
    config: Optional[BridgeConfig] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Collaborators to serve from; when omitted the lifespan
            opens the Zotero backends described by ``config``
        config: Bridge configuration

    Returns:
        Configured FastAPI application
    """
    global _bridge, _config

    _config = config or BridgeConfig()
    _bridge = CitekeyBridge(services, _config) if services is not None else None

    app = FastAPI(
        title="Citekey Bridge",
        description="Resolve citation keys against a Zotero library",
        version=__version__,
        lifespan=lifespan,
    )

    router = _build_router()
    app.include_router(router)
    prefix = _config.route_prefix.rstrip("/")
    if prefix:
        app.include_router(router, prefix=prefix)

    return app
