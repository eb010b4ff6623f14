"""
Pod discovery: cache check, DNS enumeration, identity probing and matching.

A lookup ends in exactly one of three ways: a cached address, a freshly
discovered (and now cached) address, or a typed failure reason. Failures are
never retried inside a lookup; the next request for the same podId simply
starts a new round.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from opentelemetry import trace

from pod_router.discovery.cache import PodCache
from pod_router.discovery.errors import NoCandidates, PodNotFound
from pod_router.discovery.prober import IdentityProber, match
from pod_router.discovery.resolver import AddressEnumerator

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

REASON_NO_IPS = NoCandidates.reason
REASON_NOT_FOUND = PodNotFound.reason
REASON_DNS_ERROR = "dns_error"


@dataclass(frozen=True)
class DiscoveryResult:
    pod_id: str
    address: Optional[str] = None
    reason: Optional[str] = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.address is not None


class PodDiscovery:
    def __init__(
        self,
        enumerator: AddressEnumerator,
        prober: IdentityProber,
        cache: PodCache,
        probe_timeout: float = 3.0,
        coalesce: bool = True,
    ):
        self.enumerator = enumerator
        self.prober = prober
        self.cache = cache
        self.probe_timeout = probe_timeout
        self.coalesce = coalesce
        self._in_flight: Dict[str, asyncio.Future] = {}

    async def discover(self, pod_id: str) -> DiscoveryResult:
        cached = self.cache.get(pod_id)
        if cached is not None:
            logger.info(f"[CACHE HIT] podId={pod_id} → {cached}")
            return DiscoveryResult(pod_id=pod_id, address=cached, cached=True)

        if not self.coalesce:
            return await self._discover_uncached(pod_id)

        pending = self._in_flight.get(pod_id)
        if pending is None:
            pending = asyncio.ensure_future(self._discover_uncached(pod_id))
            self._in_flight[pod_id] = pending
            pending.add_done_callback(lambda _: self._in_flight.pop(pod_id, None))
        else:
            logger.debug(f"[DISCOVERY] Joining in-flight round for podId={pod_id}")

        # A waiter going away must not cancel the round other waiters share
        return await asyncio.shield(pending)

    async def _discover_uncached(self, pod_id: str) -> DiscoveryResult:
        logger.info(f"[CACHE MISS] Discovering IP for podId={pod_id}")
        with tracer.start_as_current_span("pod_discovery") as span:
            span.set_attribute("pod.id", pod_id)
            try:
                addresses = await self.enumerator.enumerate()
            except NoCandidates:
                span.set_attribute("discovery.result", REASON_NO_IPS)
                return DiscoveryResult(pod_id=pod_id, reason=REASON_NO_IPS)
            except Exception as e:
                logger.error(f"[DNS ERROR] {e}")
                span.set_attribute("discovery.result", REASON_DNS_ERROR)
                return DiscoveryResult(pod_id=pod_id, reason=REASON_DNS_ERROR)

            span.set_attribute("discovery.candidates", len(addresses))
            results = await self.prober.probe_all(addresses, self.probe_timeout)

            found = match(results, pod_id)
            if found is None:
                logger.error(f"[NOT FOUND] podId={pod_id} not found among live replicas")
                span.set_attribute("discovery.result", REASON_NOT_FOUND)
                return DiscoveryResult(pod_id=pod_id, reason=REASON_NOT_FOUND)

            self.cache.put(pod_id, found.address)
            logger.info(
                f"[DISCOVERED] podId={pod_id} → {found.address} "
                f"(cached {self.cache.ttl:g}s)"
            )
            span.set_attribute("discovery.result", "resolved")
            span.set_attribute("discovery.address", found.address)
            return DiscoveryResult(pod_id=pod_id, address=found.address)
