import logging
from dataclasses import dataclass, field
from typing import List, Optional

from opentelemetry import trace

from pod_router.discovery.errors import NoCandidates
from pod_router.discovery.prober import IdentityProber, ProbeResult
from pod_router.discovery.resolver import AddressEnumerator

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

REASON_DNS_ERROR = "dns_error"
REASON_NO_IPS = NoCandidates.reason
REASON_SOME_PODS_UNHEALTHY = "some_pods_unhealthy"


@dataclass
class HealthSnapshot:
    ok: bool
    reason: Optional[str] = None
    pods: List[ProbeResult] = field(default_factory=list)

    def to_payload(self) -> dict:
        payload = {
            "status": "ok" if self.ok else "unhealthy",
            "pods": [pod.to_payload() for pod in self.pods],
        }
        if not self.ok:
            payload["reason"] = self.reason
        return payload


class HealthAggregator:
    """
    Fleet-wide check: healthy only when every resolved replica reports an
    identity. This catches replicas that are up but misconfigured, which
    per-podId routing alone would only notice as sporadic misses.
    """

    def __init__(self, enumerator: AddressEnumerator, prober: IdentityProber, timeout: float = 2.0):
        self.enumerator = enumerator
        self.prober = prober
        self.timeout = timeout

    async def check(self) -> HealthSnapshot:
        with tracer.start_as_current_span("pod_health_check") as span:
            try:
                addresses = await self.enumerator.enumerate()
            except NoCandidates:
                span.set_attribute("health.reason", REASON_NO_IPS)
                return HealthSnapshot(ok=False, reason=REASON_NO_IPS)
            except Exception as e:
                logger.error(f"[HEALTH DNS ERROR] {e}")
                span.set_attribute("health.reason", REASON_DNS_ERROR)
                return HealthSnapshot(ok=False, reason=REASON_DNS_ERROR)

            logger.info(f"[HEALTH] Resolved IPs: {', '.join(addresses)}")
            results = await self.prober.probe_all(addresses, self.timeout)
            healthy = [r for r in results if r.ok]
            span.set_attribute("health.candidates", len(results))
            span.set_attribute("health.healthy", len(healthy))

            if len(healthy) < len(results):
                logger.error(
                    f"[HEALTH FAIL] {len(results) - len(healthy)}/{len(results)} pods unhealthy"
                )
                span.set_attribute("health.reason", REASON_SOME_PODS_UNHEALTHY)
                return HealthSnapshot(
                    ok=False, reason=REASON_SOME_PODS_UNHEALTHY, pods=healthy
                )

            return HealthSnapshot(ok=True, pods=healthy)
