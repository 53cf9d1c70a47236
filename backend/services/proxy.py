"""
Streaming media proxy.

Forwards range requests for media to arbitrary upstream hosts that pass the
allow-list, copies a fixed set of response headers and streams the body
back without holding it in memory.
"""
import logging
from typing import AsyncIterator, Dict, Optional
from urllib.parse import urlsplit

import httpx
from starlette.responses import Response, StreamingResponse

from core.config import PROXY_CHUNK_SIZE, PROXY_MAX_REDIRECTS, Settings
from core.security import HostAllowList, is_private_host

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "HEAD", "OPTIONS")

PASSTHROUGH_HEADERS = (
    "content-type",
    "content-length",
    "content-range",
    "accept-ranges",
    "content-disposition",
    "cache-control",
    "etag",
    "last-modified",
)


class ProxyError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def build_cors_headers(settings: Settings) -> Dict[str, str]:
    origin = settings.proxy_cors_origin
    headers = {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": ", ".join(ALLOWED_METHODS),
        "Access-Control-Allow-Headers": "Range, Content-Type, Authorization",
        "Access-Control-Expose-Headers": "Content-Length, Content-Range, Accept-Ranges, Content-Type",
    }
    if origin != "*":
        headers["Access-Control-Allow-Credentials"] = "true"
        headers["Vary"] = "Origin"
    return headers


def validate_target(raw_url: Optional[str], allow_list: HostAllowList, block_private: bool = False) -> str:
    """Check a proxy target, raising ProxyError with the client-facing reason."""
    if not raw_url:
        raise ProxyError(400, "Missing url parameter")

    try:
        parsed = urlsplit(raw_url.strip())
        parsed.port  # raises on a malformed port
    except ValueError:
        raise ProxyError(400, "Invalid url parameter")

    if not parsed.scheme:
        raise ProxyError(400, "Invalid url parameter")
    if parsed.scheme.lower() not in ("http", "https"):
        raise ProxyError(400, "Unsupported protocol")
    if not parsed.hostname:
        raise ProxyError(400, "Invalid url parameter")

    # Never echo the host back; the reason stays generic
    if block_private and is_private_host(parsed.hostname):
        logger.warning(f"Blocked proxy request to private host: {raw_url[:100]}")
        raise ProxyError(403, "Proxy host not allowed")
    if not allow_list.is_url_allowed(parsed):
        logger.info(f"Proxy host not on allow-list: {raw_url[:100]}")
        raise ProxyError(403, "Proxy host not allowed")

    return parsed.geturl()


def build_upstream_headers(range_header: Optional[str]) -> Dict[str, str]:
    """Only Range is forwarded; cookies and credentials never reach the upstream."""
    return {"Range": range_header} if range_header else {}


def passthrough_headers(upstream_headers: httpx.Headers) -> Dict[str, str]:
    headers = {name: upstream_headers[name] for name in PASSTHROUGH_HEADERS if name in upstream_headers}
    # A body that was decoded no longer matches the upstream length
    if upstream_headers.get("content-encoding", "identity").lower() != "identity":
        headers.pop("content-length", None)
    return headers


def create_proxy_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=transport,
        follow_redirects=True,
        max_redirects=PROXY_MAX_REDIRECTS,
        timeout=httpx.Timeout(connect=10.0, read=settings.proxy_timeout_seconds, write=10.0, pool=None),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        # Uncompressed bodies keep the passthrough content-length accurate
        headers={"Accept-Encoding": "identity"},
    )


async def _first_chunk(body: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await body.__anext__()
    except StopAsyncIteration:
        return None


async def forward_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    range_header: Optional[str] = None,
    extra_headers: Optional[Dict[str, str]] = None,
    buffer: bool = False,
) -> Response:
    """Fetch ``url`` upstream and build the response relayed to the client.

    With ``buffer`` the whole body is read before responding, for runtimes
    that cannot stream; streaming is the default.
    """
    request = client.build_request(method, url, headers=build_upstream_headers(range_header))
    try:
        upstream = await client.send(request, stream=True)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Upstream fetch failed for {url[:100]}: {e}")
        raise ProxyError(502, "Upstream fetch failed") from e

    headers = passthrough_headers(upstream.headers)
    if extra_headers:
        headers.update(extra_headers)

    if method == "HEAD":
        await upstream.aclose()
        return Response(status_code=upstream.status_code, headers=headers)

    body = upstream.aiter_bytes(PROXY_CHUNK_SIZE)
    try:
        first = await _first_chunk(body)
    except httpx.HTTPError as e:
        await upstream.aclose()
        logger.warning(f"Upstream body failed for {url[:100]}: {e}")
        raise ProxyError(502, "Upstream fetch failed") from e

    if (
        first is None
        and upstream.is_success
        and upstream.status_code != 204
        and "content-length" not in upstream.headers
    ):
        await upstream.aclose()
        logger.warning(f"Upstream returned {upstream.status_code} without a body for {url[:100]}")
        raise ProxyError(502, "Upstream response missing body")

    if buffer:
        try:
            chunks = [first] if first else []
            async for chunk in body:
                chunks.append(chunk)
        except httpx.HTTPError as e:
            logger.warning(f"Upstream body failed for {url[:100]}: {e}")
            raise ProxyError(502, "Upstream fetch failed") from e
        finally:
            await upstream.aclose()
        return Response(content=b"".join(chunks), status_code=upstream.status_code, headers=headers)

    async def stream_body():
        try:
            if first:
                yield first
            async for chunk in body:
                yield chunk
        finally:
            await upstream.aclose()

    logger.debug(f"Streaming {upstream.status_code} from {url[:100]}")
    return StreamingResponse(stream_body(), status_code=upstream.status_code, headers=headers)
