"""
Clip Share Backend - Main Application

This is the entry point for the FastAPI application.
Most logic lives in:
- core/: Configuration and security utilities
- services/: Proxy, session documents, storage, mixdown, publishing
- api/routes/: REST API endpoints
- player/: Headless playback synchronizer
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import PROXY_PATH, Settings
from core.security import HostAllowList
from services.proxy import create_proxy_client
from services.storage import SessionStore, create_session_store
from api.routes.proxy import router as proxy_router
from api.routes.sessions import media_router, router as sessions_router

logger = logging.getLogger(__name__)

SERVICE_NAME = "Clip Share Backend"


def configure_logging(settings: Settings):
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))


# ============================================================================
# Application Lifecycle
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - release HTTP clients on shutdown."""
    settings = app.state.settings
    logger.info(
        f"Starting {SERVICE_NAME} ({settings.environment}), proxy allow-list mode: {app.state.allow_list.mode.value}"
    )
    yield

    await app.state.proxy_client.aclose()
    logger.info("Closed proxy HTTP client")
    await app.state.session_store.close()


class ApiCORSMiddleware(CORSMiddleware):
    """CORS for the JSON API; the media proxy answers with its own CORS headers."""

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"].startswith(PROXY_PATH):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


# ============================================================================
# Error Handlers
# ============================================================================

async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Render every HTTP error as {"error": message}, keeping headers such as CORS."""
    return JSONResponse(
        {"error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"Invalid request: {location} {errors[0].get('msg', '')}".strip()
    return JSONResponse({"error": message}, status_code=400)


# ============================================================================
# App Initialization
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    proxy_client: Optional[httpx.AsyncClient] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings)

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.state.settings = settings
    app.state.allow_list = HostAllowList.from_entries(settings.proxy_allowed_hosts, settings.is_production)
    app.state.proxy_client = proxy_client or create_proxy_client(settings)
    app.state.session_store = session_store or create_session_store(settings)

    allowed_origins = list(settings.allowed_origins)
    app.add_middleware(
        ApiCORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=allowed_origins != ["*"],
        allow_methods=["GET", "HEAD", "POST", "OPTIONS"],
        allow_headers=["Range", "Content-Type", "Authorization"],
        expose_headers=["Content-Length", "Content-Range", "Accept-Ranges", "Content-Type"],
    )

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Include API routers
    app.include_router(proxy_router)
    app.include_router(sessions_router)
    app.include_router(media_router)

    @app.get("/")
    def read_root():
        """Health check endpoint."""
        return {"status": "ok", "service": SERVICE_NAME}

    return app


app = create_app()


# ============================================================================
# Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
