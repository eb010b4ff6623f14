"""FastAPI dependency providers for the process-wide routing components."""

import httpx
from starlette.requests import HTTPConnection

from pod_router.discovery import HealthAggregator, PodDiscovery


def get_discovery(connection: HTTPConnection) -> PodDiscovery:
    return connection.app.state.discovery


def get_health(connection: HTTPConnection) -> HealthAggregator:
    return connection.app.state.health


def get_http_client(connection: HTTPConnection) -> httpx.AsyncClient:
    return connection.app.state.http_client


def get_settings(connection: HTTPConnection) -> dict:
    return connection.app.state.settings
