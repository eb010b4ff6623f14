from .cache import PodCache
from .errors import (
    DiscoveryError,
    NoCandidates,
    NoPodIdInPath,
    PodNotFound,
    ProbeFailure,
    ProxyFailure,
)
from .health import HealthAggregator, HealthSnapshot
from .orchestrator import DiscoveryResult, PodDiscovery
from .prober import IdentityProber, ProbeResult
from .resolver import AddressEnumerator, format_host

__all__ = [
    "AddressEnumerator",
    "DiscoveryError",
    "DiscoveryResult",
    "HealthAggregator",
    "HealthSnapshot",
    "IdentityProber",
    "NoCandidates",
    "NoPodIdInPath",
    "PodCache",
    "PodDiscovery",
    "PodNotFound",
    "ProbeFailure",
    "ProbeResult",
    "ProxyFailure",
    "format_host",
]
