"""OpenTelemetry + Prometheus wiring for the rollout watcher."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from rollout_notify import config

logger = logging.getLogger("rollout_notify.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None

_hook_counter: Any | None = None
_parser_failure_counter: Any | None = None
_bytes_counter: Any | None = None

_prom_enabled = False
_prom_hook_counter: Any | None = None
_prom_parser_failure_counter: Any | None = None
_prom_bytes_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _hook_status(result: Any) -> str:
    if not getattr(result, "invoked", False):
        return "skipped"
    return "ok" if getattr(result, "ok", False) else "failed"


def initialize() -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider
    global _hook_counter, _parser_failure_counter, _bytes_counter
    global _prom_enabled, _prom_hook_counter, _prom_parser_failure_counter, _prom_bytes_counter

    if _initialized:
        return
    _initialized = True

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_hook_counter = Counter(
                "rollout_notify_hook_invocations_total",
                "Notify hook invocations by outcome",
                ["status"],
            )
            _prom_parser_failure_counter = Counter(
                "rollout_notify_parser_failures_total",
                "Rollout lines that could not be parsed",
                ["parser"],
            )
            _prom_bytes_counter = Counter(
                "rollout_notify_bytes_read_total",
                "Bytes read from the watched rollout file",
            )
            _prom_enabled = True
            logger.info("Prometheus metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus metrics not started: %s", exc)
            _prom_enabled = False

    if not config.OTEL_ENABLED:
        logger.debug("OpenTelemetry disabled (ROLLOUT_NOTIFY_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "rollout-notify"

    resource = Resource.create({"service.name": service_name})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("rollout_notify")

    _hook_counter = meter.create_counter(
        "rollout_notify_hook_invocations_total",
        unit="1",
        description="Notify hook invocations by outcome",
    )
    _parser_failure_counter = meter.create_counter(
        "rollout_notify_parser_failures_total",
        unit="1",
        description="Rollout lines that could not be parsed",
    )
    _bytes_counter = meter.create_counter(
        "rollout_notify_bytes_read_total",
        unit="By",
        description="Bytes read from the watched rollout file",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("rollout_notify")
    _enabled = True

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown() -> None:
    global _enabled
    if not _initialized:
        return
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_hook_invocation(result: Any) -> None:
    status = _hook_status(result)
    if _enabled and _hook_counter is not None:
        _hook_counter.add(1, {"status": status})
    if _prom_enabled and _prom_hook_counter is not None:
        _prom_hook_counter.labels(status=status).inc()


def record_parser_failure(parser: str) -> None:
    label = parser or "unknown"
    if _enabled and _parser_failure_counter is not None:
        _parser_failure_counter.add(1, {"parser": label})
    if _prom_enabled and _prom_parser_failure_counter is not None:
        _prom_parser_failure_counter.labels(parser=label).inc()


def record_poll(bytes_read: int) -> None:
    count = max(0, int(bytes_read))
    if count == 0:
        return
    if _enabled and _bytes_counter is not None:
        _bytes_counter.add(count)
    if _prom_enabled and _prom_bytes_counter is not None:
        _prom_bytes_counter.inc(count)
