import os


class ConfigurationError(RuntimeError):
    """Raised at startup when the environment cannot drive the router."""


SERVICE_NAME = os.getenv("SERVICE_NAME", "pod-router")

# Backend pool, e.g. colyseus.up.railway.internal
POD_DNS_NAME = os.environ.get(
    "POD_DNS_NAME", os.environ.get("COLYSEUS_INTERNAL_URL", "")
).strip()
POD_PORT = os.environ.get("POD_PORT", os.environ.get("COLYSEUS_PORT", "2567"))
POD_ID_PATH = os.environ.get("POD_ID_PATH", "/podid")

HOST = os.environ.get("HOST", "::")
PORT = os.environ.get("PORT", "80")
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

DISCOVERY_PROBE_TIMEOUT = os.getenv("DISCOVERY_PROBE_TIMEOUT", "3.0")
HEALTH_PROBE_TIMEOUT = os.getenv("HEALTH_PROBE_TIMEOUT", "2.0")
POD_CACHE_TTL = os.getenv("POD_CACHE_TTL", "18")
DISCOVERY_COALESCE = os.getenv("DISCOVERY_COALESCE", "true").lower() == "true"

PROXY_TIMEOUT = os.getenv("PROXY_TIMEOUT", "300")
WS_OPEN_TIMEOUT = os.getenv("WS_OPEN_TIMEOUT", "10")
DISCOVERY_FAILURE_STATUS = os.getenv("DISCOVERY_FAILURE_STATUS", "504")

METRICS_PATH = os.getenv("METRICS_PATH", "/metrics")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")


def _as_number(name: str, raw: str, cast=float):
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def validate_config() -> dict:
    """
    Check the environment once at startup and return the parsed settings.

    Raises:
        ConfigurationError: when the backend pool hostname is missing or a
            numeric setting cannot be parsed.
    """
    if not POD_DNS_NAME:
        raise ConfigurationError(
            "POD_DNS_NAME (or COLYSEUS_INTERNAL_URL) must name the backend pool"
        )

    failure_status = int(_as_number("DISCOVERY_FAILURE_STATUS", DISCOVERY_FAILURE_STATUS, int))
    if failure_status not in (404, 504):
        raise ConfigurationError(
            f"DISCOVERY_FAILURE_STATUS must be 404 or 504, got {failure_status}"
        )

    return {
        "dns_name": POD_DNS_NAME,
        "pod_port": _as_number("POD_PORT", POD_PORT, int),
        "pod_id_path": "/" + POD_ID_PATH.lstrip("/"),
        "port": _as_number("PORT", PORT, int),
        "probe_timeout": _as_number("DISCOVERY_PROBE_TIMEOUT", DISCOVERY_PROBE_TIMEOUT),
        "health_timeout": _as_number("HEALTH_PROBE_TIMEOUT", HEALTH_PROBE_TIMEOUT),
        "cache_ttl": _as_number("POD_CACHE_TTL", POD_CACHE_TTL),
        "coalesce": DISCOVERY_COALESCE,
        "proxy_timeout": _as_number("PROXY_TIMEOUT", PROXY_TIMEOUT),
        "ws_open_timeout": _as_number("WS_OPEN_TIMEOUT", WS_OPEN_TIMEOUT),
        "failure_status": failure_status,
    }
