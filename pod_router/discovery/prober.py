"""
Identity probing.

Every backend replica answers ``GET /podid`` with ``{"podId": "..."}``. A
probing round asks all candidates at once and waits until each one has
either answered or failed; one slow replica never holds back the others
beyond its own timeout, and no probe is cancelled because a sibling matched.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from pod_router.discovery.errors import ProbeFailure
from pod_router.discovery.resolver import format_host

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe; exactly one of ``pod_id`` and ``error`` is set."""

    address: str
    pod_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.pod_id is not None

    def to_payload(self) -> dict:
        return {"ip": self.address, "podId": self.pod_id}


def parse_identity(payload) -> Optional[str]:
    """Extract the podId from a decoded /podid body, or None if unusable."""
    if not isinstance(payload, dict):
        return None
    pod_id = payload.get("podId")
    if pod_id is None or isinstance(pod_id, (dict, list)):
        return None
    if isinstance(pod_id, bool):
        pod_id = str(pod_id).lower()
    elif isinstance(pod_id, float) and pod_id.is_integer():
        pod_id = int(pod_id)
    pod_id = str(pod_id)
    return pod_id or None


class IdentityProber:
    def __init__(self, client: httpx.AsyncClient, port: int, path: str = "/podid"):
        self.client = client
        self.port = port
        self.path = path

    def identity_url(self, address: str) -> str:
        return f"http://{format_host(address, self.port)}{self.path}"

    async def _probe_one(self, address: str, timeout: float) -> str:
        url = self.identity_url(address)
        try:
            # httpx timeouts apply per read, not to the whole exchange
            response = await asyncio.wait_for(self.client.get(url, timeout=timeout), timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.TimeoutException, asyncio.TimeoutError):
            raise ProbeFailure(address, "timeout")
        except httpx.HTTPStatusError as e:
            raise ProbeFailure(address, f"status {e.response.status_code}")
        except httpx.HTTPError as e:
            raise ProbeFailure(address, f"unreachable ({type(e).__name__})")
        except ValueError:
            raise ProbeFailure(address, "invalid JSON")

        pod_id = parse_identity(payload)
        if pod_id is None:
            raise ProbeFailure(address, "podId missing")
        return pod_id

    async def probe(self, address: str, timeout: float) -> ProbeResult:
        """Probe a single candidate; failures are returned, never raised."""
        try:
            pod_id = await self._probe_one(address, timeout)
        except ProbeFailure as e:
            logger.info(f"[PROBE] {address} → unreachable or no podId ({e})")
            return ProbeResult(address=address, error=str(e))
        return ProbeResult(address=address, pod_id=pod_id)

    async def probe_all(self, addresses: List[str], timeout: float) -> List[ProbeResult]:
        """Probe all candidates concurrently; results keep candidate order."""
        return list(
            await asyncio.gather(*(self.probe(address, timeout) for address in addresses))
        )


def match(results: List[ProbeResult], pod_id: str) -> Optional[ProbeResult]:
    """
    Pick the candidate reporting ``pod_id``.

    Two replicas claiming the same identity is a deployment error; the first
    one in candidate order wins and the clash is logged.
    """
    claimants = [r for r in results if r.ok and r.pod_id == pod_id]
    if not claimants:
        return None
    if len(claimants) > 1:
        logger.warning(
            f"[DUPLICATE] podId={pod_id} claimed by {len(claimants)} replicas: "
            f"{', '.join(r.address for r in claimants)}; using {claimants[0].address}"
        )
    return claimants[0]
