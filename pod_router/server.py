import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import aiodns
import httpx
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from pod_router.discovery import (
    AddressEnumerator,
    HealthAggregator,
    IdentityProber,
    PodCache,
    PodDiscovery,
)
from pod_router.proxy.route import router as http_router
from pod_router.proxy.websocket import router as websocket_router
from pod_router.vars import (
    METRICS_PATH,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    SERVICE_NAME,
    validate_config,
)

logger = logging.getLogger("uvicorn.error")


def build_components(
    app: FastAPI,
    settings: dict,
    client: httpx.AsyncClient,
    resolver: Optional[aiodns.DNSResolver] = None,
    probe_client: Optional[httpx.AsyncClient] = None,
) -> None:
    """
    Wire the process-wide discovery components onto ``app.state``.

    Identity probes get their own connection pool when ``probe_client`` is
    given, so relays holding connections open never starve discovery.
    """
    probe_client = probe_client or client
    enumerator = AddressEnumerator(settings["dns_name"], resolver=resolver)
    prober = IdentityProber(probe_client, settings["pod_port"], settings["pod_id_path"])

    app.state.settings = settings
    app.state.http_client = client
    app.state.probe_client = probe_client
    app.state.cache = PodCache(settings["cache_ttl"])
    app.state.discovery = PodDiscovery(
        enumerator,
        prober,
        app.state.cache,
        probe_timeout=settings["probe_timeout"],
        coalesce=settings["coalesce"],
    )
    app.state.health = HealthAggregator(
        enumerator, prober, timeout=settings["health_timeout"]
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing configuration is fatal here, never per request
    settings = validate_config()
    relay_client = httpx.AsyncClient(follow_redirects=False)
    probe_client = httpx.AsyncClient(follow_redirects=False)
    async with relay_client as client, probe_client:
        build_components(app, settings, client, probe_client=probe_client)
        logger.info(f"Proxy server listening on port {settings['port']}")
        logger.info(f"Target service DNS: {settings['dns_name']}")
        logger.info(f"Target port: {settings['pod_port']}")
        yield


app = FastAPI(lifespan=lifespan)
instrumentator = Instrumentator()

instrumentator.instrument(app)
if METRICS_PATH:
    # Registered ahead of the catch-all routes, so this path is never a podId
    instrumentator.expose(app, endpoint=METRICS_PATH)


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streaming responses.
    This prevents hundreds of tiny spans from cluttering traces.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type")
                in ("http.response.body", "websocket.send", "websocket.receive")
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=OTLP_HEADERS or None,
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )

FastAPIInstrumentor.instrument_app(app, excluded_urls="")

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})

app.include_router(http_router)
app.include_router(websocket_router)
