"""
WebSocket relaying.

Upgrades are routed with the same podId rules as plain HTTP. A lookup that
fails closes the connection before it is accepted, so the client never gets
an open socket; on success the router opens its own WebSocket to the backend
and pumps frames in both directions until either side goes away.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, WebSocket
from opentelemetry import trace
from starlette.websockets import WebSocketDisconnect, WebSocketState
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from pod_router.discovery import NoPodIdInPath, PodDiscovery, ProxyFailure, format_host
from pod_router.proxy.dependencies import get_discovery, get_settings
from pod_router.proxy.route import HOP_BY_HOP_HEADERS, build_target
from pod_router.utils import elapsed_ms, extract_pod_id, raw_path_with_query
from pod_router.utils.exception_logging import (
    find_exception_in_exception_groups,
    format_exception_message,
    log_exception_with_details,
)
from pod_router.utils.traced_requests import traced_request

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Negotiated by the websockets client itself on the backend leg
HANDSHAKE_HEADERS = {
    "host",
    "sec-websocket-key",
    "sec-websocket-version",
    "sec-websocket-extensions",
    "sec-websocket-protocol",
}

# Codes that may not be sent in a close frame
RESERVED_CLOSE_CODES = {1004, 1005, 1006, 1015}


def sendable_close_code(code: Optional[int]) -> int:
    if code is None or code in RESERVED_CLOSE_CODES or not 1000 <= code <= 4999:
        return 1000
    return code


def prepare_websocket_headers(websocket: WebSocket) -> Dict[str, str]:
    """Client headers worth forwarding on the backend handshake."""
    headers = {}
    for name, value in websocket.headers.items():
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower in HANDSHAKE_HEADERS:
            continue
        headers[name_lower] = value

    client_ip = websocket.client.host if websocket.client else "unknown"
    existing_xff = headers.get("x-forwarded-for", "")
    headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")
    headers["x-forwarded-host"] = websocket.headers.get("host", "")
    headers["x-real-ip"] = client_ip
    return headers


def get_target_uri(websocket: WebSocket, target: str) -> str:
    return f"{target}{raw_path_with_query(websocket.scope)}"


async def _client_to_backend(websocket: WebSocket, backend: ClientConnection) -> None:
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                await backend.close(code=sendable_close_code(message.get("code")))
                return
            if message.get("text") is not None:
                await backend.send(message["text"])
            elif message.get("bytes") is not None:
                await backend.send(message["bytes"])
    except ConnectionClosed:
        return


async def _backend_to_client(websocket: WebSocket, backend: ClientConnection) -> None:
    try:
        async for message in backend:
            if isinstance(message, str):
                await websocket.send_text(message)
            else:
                await websocket.send_bytes(message)
    except ConnectionClosed:
        pass
    await _close_client(websocket, backend.close_code)


async def _close_client(websocket: WebSocket, code: Optional[int]) -> None:
    if (
        websocket.client_state != WebSocketState.DISCONNECTED
        and websocket.application_state != WebSocketState.DISCONNECTED
    ):
        await websocket.close(code=sendable_close_code(code))


async def relay(websocket: WebSocket, backend: ClientConnection) -> None:
    """Pump frames both ways; when one direction ends the other is cancelled."""
    tasks: List[asyncio.Task] = [
        asyncio.create_task(_client_to_backend(websocket, backend)),
        asyncio.create_task(_backend_to_client(websocket, backend)),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    errors = [
        task.exception()
        for task in done
        if not task.cancelled() and task.exception() is not None
    ]
    if errors:
        raise ExceptionGroup("WebSocket relay interrupted", errors)


async def open_backend(
    websocket: WebSocket, uri: str, open_timeout: float
) -> ClientConnection:
    """
    Raises:
        ProxyFailure: when the backend refuses or cannot complete the handshake.
    """
    try:
        return await connect(
            uri,
            additional_headers=prepare_websocket_headers(websocket),
            subprotocols=websocket.scope.get("subprotocols") or None,
            open_timeout=open_timeout,
            max_size=None,
        )
    except (OSError, TimeoutError, InvalidHandshake, InvalidURI) as e:
        raise ProxyFailure(uri, f"{type(e).__name__}: {e}") from e


@router.websocket("/{path:path}")
async def proxy_websocket(
    websocket: WebSocket,
    path: str,
    discovery: PodDiscovery = Depends(get_discovery),
    settings: dict = Depends(get_settings),
):
    start = time.monotonic()
    pod_id = extract_pod_id(websocket.url.path)

    with traced_request(
        tracer,
        operation="proxy_websocket",
        pod_id=pod_id,
        start_message=f"[WS UPGRADE] {websocket.url.path} → podId={pod_id or '(none)'}",
    ) as span:
        if not pod_id:
            logger.info("[WS REJECT] No podId")
            span.set_attribute("proxy.error", NoPodIdInPath.reason)
            await websocket.close()
            return

        result = await discovery.discover(pod_id)
        if not result.ok:
            logger.info(f"[WS REJECT] podId={pod_id} not found ({result.reason})")
            span.set_attribute("proxy.error", result.reason)
            await websocket.close()
            return

        port = settings["pod_port"]
        target = build_target(result.address, port, scheme="ws")
        uri = get_target_uri(websocket, target)
        span.set_attribute("proxy.target", target)
        # Host on the backend leg is taken from the URI: the resolved address
        span.set_attribute("proxy.host", format_host(result.address, port))

        try:
            backend = await open_backend(websocket, uri, settings["ws_open_timeout"])
        except ProxyFailure as e:
            log_exception_with_details(logger, f"[WS PROXY ERROR] {websocket.url.path}", e)
            span.set_attribute("proxy.error", "relay_failed")
            await websocket.close()
            return

        async with backend:
            await websocket.accept(subprotocol=backend.subprotocol)
            logger.info(
                f"[WS OK] Connected to {target} ({elapsed_ms(start, time.monotonic())}ms)"
            )
            try:
                await relay(websocket, backend)
            except ExceptionGroup as e:
                if find_exception_in_exception_groups(e, WebSocketDisconnect) is not None:
                    logger.info(
                        f"[WS CLOSED] {websocket.url.path} client went away: "
                        f"{format_exception_message(e)}"
                    )
                    return
                log_exception_with_details(logger, f"[WS PROXY ERROR] {websocket.url.path}", e)
                span.set_attribute("proxy.error", "relay_failed")
                await _close_client(websocket, 1011)
