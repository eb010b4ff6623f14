import httpx
import pytest
from unittest.mock import AsyncMock, Mock

from pod_router.discovery import AddressEnumerator, NoCandidates


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Parsed settings as validate_config() would return them."""
    return {
        "dns_name": "pods.internal",
        "pod_port": 2567,
        "pod_id_path": "/podid",
        "port": 80,
        "probe_timeout": 3.0,
        "health_timeout": 2.0,
        "cache_ttl": 18.0,
        "coalesce": True,
        "proxy_timeout": 30.0,
        "ws_open_timeout": 5.0,
        "failure_status": 504,
    }


@pytest.fixture
def make_enumerator():
    """Build an enumerator double that returns ``addresses`` (or raises)."""

    def _make(addresses=None, error=None):
        enumerator = Mock(spec=AddressEnumerator)
        enumerator.hostname = "pods.internal"
        if error is not None:
            enumerator.enumerate = AsyncMock(side_effect=error)
        elif not addresses:
            enumerator.enumerate = AsyncMock(side_effect=NoCandidates("pods.internal"))
        else:
            enumerator.enumerate = AsyncMock(return_value=list(addresses))
        return enumerator

    return _make


@pytest.fixture
def pod_transport():
    """
    MockTransport answering /podid from a mapping of host -> podId.

    A value of ``None`` makes the host refuse connections; any other
    non-string value is returned verbatim as the JSON body.
    """

    def _make(identities):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            host = request.url.host
            calls.append(host)
            if host not in identities or identities[host] is None:
                raise httpx.ConnectError("connection refused", request=request)
            identity = identities[host]
            if isinstance(identity, str):
                return httpx.Response(200, json={"podId": identity})
            return httpx.Response(200, json=identity)

        transport = httpx.MockTransport(handler)
        transport.calls = calls
        return transport

    return _make
