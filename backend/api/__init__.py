"""
API routes module.
"""
from api.routes.proxy import router as proxy_router
from api.routes.sessions import router as sessions_router, media_router

__all__ = ["proxy_router", "sessions_router", "media_router"]
