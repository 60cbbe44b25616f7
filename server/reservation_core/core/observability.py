"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
import structlog

from .config import settings

SERVICE_NAME = "resort-reservation-core"
SERVICE_VERSION = "1.0.0"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Hold metrics
HOLDS_CREATED = Counter(
    'reservation_holds_created_total',
    'Total reservation holds created',
    ['room_type_id'],
    registry=REGISTRY
)

HOLDS_RESOLVED = Counter(
    'reservation_holds_resolved_total',
    'Total reservation holds leaving the ACTIVE state',
    ['state'],
    registry=REGISTRY
)

HOLDS_REJECTED = Counter(
    'reservation_holds_rejected_total',
    'Hold requests rejected for insufficient availability',
    ['room_type_id'],
    registry=REGISTRY
)

ACTIVE_HOLDS = Gauge(
    'reservation_holds_active',
    'Number of active holds seen by the last lease sweep',
    registry=REGISTRY
)

# Payment metrics
PAYMENT_TRANSITIONS = Counter(
    'payment_transitions_total',
    'Payment events processed by outcome',
    ['event', 'outcome'],
    registry=REGISTRY
)

RECONCILIATIONS = Counter(
    'payment_reconciliations_total',
    'Provider reconciliations by result',
    ['result'],
    registry=REGISTRY
)

PROVIDER_REQUEST_DURATION = Histogram(
    'payment_provider_request_duration_seconds',
    'Latency of provider status queries',
    ['provider'],
    registry=REGISTRY
)

# Audit metrics
AUDIT_ENTRIES = Counter(
    'audit_entries_written_total',
    'Audit entries appended',
    ['entity_type', 'action'],
    registry=REGISTRY
)

NOTIFICATIONS = Counter(
    'notification_events_total',
    'Notification events queued for delivery',
    ['event_type'],
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    # Request id and trace ids are bound by the request context middleware
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing."""
    trace.set_tracer_provider(TracerProvider(resource=_resource()))

    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        trace.get_tracer_provider().add_span_processor(BatchSpanProcessor(otlp_exporter))

    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Instrument the async engine's sync core with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_hold_created(room_type_id: str):
        HOLDS_CREATED.labels(room_type_id=room_type_id).inc()

    @staticmethod
    def record_hold_rejected(room_type_id: str):
        HOLDS_REJECTED.labels(room_type_id=room_type_id).inc()

    @staticmethod
    def record_hold_resolved(state: str, count: int = 1):
        """Record holds moving to COMMITTED, RELEASED or EXPIRED."""
        HOLDS_RESOLVED.labels(state=state).inc(count)

    @staticmethod
    def set_active_holds(count: int):
        ACTIVE_HOLDS.set(count)

    @staticmethod
    def record_payment_transition(event: str, outcome: str):
        PAYMENT_TRANSITIONS.labels(event=event, outcome=outcome).inc()

    @staticmethod
    def record_reconciliation(result: str):
        RECONCILIATIONS.labels(result=result).inc()

    @staticmethod
    def observe_provider_request(provider: str, seconds: float):
        PROVIDER_REQUEST_DURATION.labels(provider=provider).observe(seconds)

    @staticmethod
    def record_audit_entry(entity_type: str, action: str):
        AUDIT_ENTRIES.labels(entity_type=entity_type, action=action).inc()

    @staticmethod
    def record_notification(event_type: str):
        NOTIFICATIONS.labels(event_type=event_type).inc()


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()


def get_logger(name: str):
    """Get a structlog logger bound to ``name``."""
    return structlog.get_logger(name)
