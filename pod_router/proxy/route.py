import logging
import time
from typing import Dict, List, Tuple

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.routing import APIRoute
from opentelemetry import trace
from starlette.background import BackgroundTask
from starlette.routing import Match

from pod_router.discovery import (
    HealthAggregator,
    NoPodIdInPath,
    PodDiscovery,
    ProxyFailure,
    format_host,
)
from pod_router.proxy.dependencies import (
    get_discovery,
    get_health,
    get_http_client,
    get_settings,
)
from pod_router.utils import elapsed_ms, extract_pod_id, raw_path_with_query
from pod_router.utils.exception_logging import log_exception_with_details
from pod_router.utils.traced_requests import traced_request

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

DISCOVERY_FAILURE_DETAIL = "Pod not found or all replicas unhealthy"

# Declared for OpenAPI; AnyMethodRoute routes every other verb as well
PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "TRACE"]


class AnyMethodRoute(APIRoute):
    """Catch-all route that accepts every HTTP method, custom verbs included."""

    def matches(self, scope):
        match, child_scope = super().matches(scope)
        if match == Match.PARTIAL:
            match = Match.FULL
        return match, child_scope

    async def handle(self, scope, receive, send):
        await self.app(scope, receive, send)


def build_target(address: str, port: int, scheme: str = "http") -> str:
    """Base URL of a backend, e.g. ``http://10.0.0.2:2567`` or ``ws://[fd00::1]:2567``."""
    return f"{scheme}://{format_host(address, port)}"


def get_target_url(request: Request, target: str) -> str:
    """Keep the full original path (podId included) and query string, escapes intact."""
    return f"{target}{raw_path_with_query(request.scope)}"


def prepare_headers(request: Request, target_host: str) -> Dict[str, str]:
    """
    Prepare headers for forwarding to the backend.
    Removes hop-by-hop headers, points Host at the backend and adds proxy headers.
    """
    headers = {}

    for name, value in request.headers.items():
        name_lower = name.lower()
        if name_lower not in HOP_BY_HOP_HEADERS and name_lower != "host":
            headers[name_lower] = value

    client_ip = request.client.host if request.client else "unknown"
    existing_xff = headers.get("x-forwarded-for", "")
    headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")
    headers["x-forwarded-host"] = request.headers.get("host", "")
    headers["x-forwarded-proto"] = request.url.scheme
    headers["x-real-ip"] = client_ip

    headers["host"] = target_host
    return headers


def filter_response_headers(headers: httpx.Headers) -> List[Tuple[bytes, bytes]]:
    """Raw ASGI header pairs minus hop-by-hop ones; repeated headers such as
    Set-Cookie are kept as separate entries."""
    return [
        (name.lower(), value)
        for name, value in headers.raw
        if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
    ]


async def forward_to_pod(
    request: Request, client: httpx.AsyncClient, target: str, target_host: str, timeout: float
) -> StreamingResponse:
    """
    Relay the request to the chosen backend and stream the response back
    untouched (compressed bodies stay compressed).

    Raises:
        ProxyFailure: when the backend cannot be reached or the relay breaks
            before the response head arrives.
    """
    target_url = get_target_url(request, target)
    logger.debug(f"Proxying {request.method} {request.url.path} -> {target_url}")

    upstream_request = client.build_request(
        method=request.method,
        url=target_url,
        headers=prepare_headers(request, target_host),
        content=await request.body(),
        timeout=httpx.Timeout(timeout),
    )
    try:
        response = await client.send(upstream_request, stream=True)
    except httpx.HTTPError as e:
        raise ProxyFailure(target, f"{type(e).__name__}: {e}") from e

    streaming = StreamingResponse(
        response.aiter_raw(),
        status_code=response.status_code,
        background=BackgroundTask(response.aclose),
    )
    streaming.raw_headers = filter_response_headers(response.headers)
    return streaming


@router.get("/health")
async def health_check(health: HealthAggregator = Depends(get_health)):
    """Fleet health: 200 only when every resolved replica reports its podId."""
    snapshot = await health.check()
    return JSONResponse(
        status_code=200 if snapshot.ok else 503,
        content=snapshot.to_payload(),
    )


async def proxy_to_pod(
    request: Request,
    path: str,
    discovery: PodDiscovery = Depends(get_discovery),
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: dict = Depends(get_settings),
):
    """Route the request to the replica serving the podId in the first path segment."""
    start = time.monotonic()
    pod_id = extract_pod_id(request.url.path)
    url = str(request.url.path) + (f"?{request.url.query}" if request.url.query else "")

    with traced_request(
        tracer,
        operation="proxy_http",
        pod_id=pod_id,
        start_message=f"[HTTP] {request.method} {url} → podId={pod_id or '(none)'}",
        extra_attrs={"proxy.method": request.method},
    ) as span:
        if not pod_id:
            span.set_attribute("proxy.error", NoPodIdInPath.reason)
            raise HTTPException(status_code=400, detail="Bad Request: podId missing in path")

        result = await discovery.discover(pod_id)
        if not result.ok:
            status_code = settings["failure_status"]
            logger.info(f"[FAIL] {status_code} podId={pod_id} not reachable ({result.reason})")
            span.set_attribute("proxy.error", result.reason)
            raise HTTPException(status_code=status_code, detail=DISCOVERY_FAILURE_DETAIL)

        port = settings["pod_port"]
        target = build_target(result.address, port)
        span.set_attribute("proxy.target", target)
        try:
            response = await forward_to_pod(
                request,
                client,
                target,
                format_host(result.address, port),
                settings["proxy_timeout"],
            )
        except ProxyFailure as e:
            log_exception_with_details(logger, f"[PROXY ERROR] HTTP {url}", e)
            span.set_attribute("proxy.error", "relay_failed")
            raise HTTPException(status_code=502, detail="Bad Gateway")

        span.set_attribute("proxy.status_code", response.status_code)
        logger.info(f"[OK] HTTP {url} → {target} ({elapsed_ms(start, time.monotonic())}ms)")
        return response


router.add_api_route(
    "/{path:path}",
    proxy_to_pod,
    methods=PROXY_METHODS,
    route_class_override=AnyMethodRoute,
)
