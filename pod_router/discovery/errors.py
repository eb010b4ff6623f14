"""Error types for pod discovery and relaying."""


class DiscoveryError(Exception):
    """Base class for lookups that cannot produce a routable address."""

    reason = "discovery_error"


class NoPodIdInPath(DiscoveryError):
    reason = "no_pod_id"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"No podId in path '{path}'")


class NoCandidates(DiscoveryError):
    """The backend pool hostname resolved to no addresses at all."""

    reason = "no_ips"

    def __init__(self, hostname: str):
        self.hostname = hostname
        super().__init__(f"No addresses resolved for '{hostname}'")


class PodNotFound(DiscoveryError):
    """No live candidate currently reports the requested podId."""

    reason = "not_found"

    def __init__(self, pod_id: str):
        self.pod_id = pod_id
        super().__init__(f"podId '{pod_id}' not found among live replicas")


class ProbeFailure(Exception):
    """A single candidate did not report a usable identity."""

    def __init__(self, address: str, message: str):
        self.address = address
        super().__init__(f"{address}: {message}")


class ProxyFailure(Exception):
    """The relay to the chosen backend failed."""

    def __init__(self, target: str, message: str):
        self.target = target
        super().__init__(f"Relay to {target} failed: {message}")
