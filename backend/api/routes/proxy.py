"""
Media proxy route.
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from starlette.responses import Response

from services.proxy import ALLOWED_METHODS, ProxyError, build_cors_headers, forward_request, validate_target

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["proxy"])


@router.api_route("/proxy", methods=["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"])
async def proxy_media(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute http(s) URL of the media to fetch"),
):
    """
    Stream media from an allow-listed host, honoring Range for seeking.
    """
    settings = request.app.state.settings
    cors_headers = build_cors_headers(settings)

    if request.method == "OPTIONS":
        return Response(status_code=204, headers={**cors_headers, "Access-Control-Max-Age": "86400"})

    if request.method not in ALLOWED_METHODS:
        raise HTTPException(
            status_code=405,
            detail="Method not allowed",
            headers={**cors_headers, "Allow": ", ".join(ALLOWED_METHODS)},
        )

    try:
        target = validate_target(url, request.app.state.allow_list, settings.proxy_block_private_networks)
        return await forward_request(
            request.app.state.proxy_client,
            request.method,
            target,
            range_header=request.headers.get("range"),
            extra_headers=cors_headers,
            buffer=settings.proxy_buffer_responses,
        )
    except ProxyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message, headers=cors_headers)
