from contextlib import asynccontextmanager
from typing import Sequence

from fastapi import FastAPI
from opentelemetry import trace
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from .config import load_environment
from .proxy import ForwardingProxy, create_proxy_router
from .vars import (
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PROXY_DEBUG,
    PROXY_DOTENV_PATH,
    PROXY_ROUTE_PREFIX,
    SERVICE_NAME,
)

try:
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider, ReadableSpan
    from opentelemetry.sdk.trace.export import (
        BatchSpanProcessor,
        SpanExporter,
        SpanExportResult,
    )
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

    _OTEL_AVAILABLE = True
except ImportError:  # pragma: no cover - tracing is optional at runtime
    Resource = TracerProvider = ReadableSpan = BatchSpanProcessor = SpanExporter = SpanExportResult = None  # type: ignore
    FastAPIInstrumentor = OTLPSpanExporter = None  # type: ignore
    _OTEL_AVAILABLE = False


class FilteringSpanExporter(SpanExporter if _OTEL_AVAILABLE else object):
    """
    Wrapper exporter that drops the per-chunk ASGI body spans produced while
    a relayed response is streamed back.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def create_app(config=None, environment=None, transport=None) -> FastAPI:
    """
    Build the proxy application.

    Without an explicit ``config`` the proxy is configured from HTTP_PROXY_*
    variables of the process environment and the ``.env`` file. Construction
    errors propagate, so a misconfigured server never starts.
    """
    if environment is None:
        environment = load_environment(PROXY_DOTENV_PATH)
    if config is None:
        config = {"debug": PROXY_DEBUG}
    proxy = ForwardingProxy(config, environment=environment, transport=transport)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await proxy.aclose()

    application = FastAPI(lifespan=lifespan)
    application.state.proxy = proxy
    Instrumentator().instrument(application).expose(application)

    if _OTEL_AVAILABLE:
        FastAPIInstrumentor.instrument_app(application)

    application.include_router(create_proxy_router(proxy, prefix=PROXY_ROUTE_PREFIX))
    return application


def configure_tracing() -> None:
    if not _OTEL_AVAILABLE:
        return
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
        )
        trace.get_tracer_provider().add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )


def build_app() -> FastAPI:
    """Factory for `uvicorn --factory forward_proxy.server:build_app`."""
    configure_tracing()
    application = create_app()
    app_info = Info("forward_proxy_app_info", "Application Info")
    app_info.info({"app_name": SERVICE_NAME})
    return application
