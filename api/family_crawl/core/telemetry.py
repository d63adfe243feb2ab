from __future__ import annotations

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from family_crawl.core.config import Settings
from family_crawl.core.observability import TelemetryRuntime, start_tracing, stop_tracing

UNTRACED_PATHS = "healthz,readyz"


def setup_api_telemetry(app: FastAPI, settings: Settings) -> TelemetryRuntime:
    runtime = start_tracing(settings)
    if runtime.enabled:
        FastAPIInstrumentor.instrument_app(app, tracer_provider=runtime.provider, excluded_urls=UNTRACED_PATHS)
    return runtime


def shutdown_api_telemetry(app: FastAPI, runtime: TelemetryRuntime) -> None:
    if runtime.enabled:
        FastAPIInstrumentor.uninstrument_app(app)
    stop_tracing(runtime)
