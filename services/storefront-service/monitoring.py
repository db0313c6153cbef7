"""Monitoring and observability setup.

Traces and metrics are exported over OTLP gRPC when ``OTEL_ENABLED`` is set
(the default). With it turned off the global no-op providers stay in place,
so every instrument below can still be recorded without an exporter.

Exemplars are attached automatically to the histograms recorded inside an
active trace, which links slow checkouts and gateway calls to their traces.
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
import pyroscope

from config import (
    OTEL_ENABLED,
    OTEL_EXPORTER_OTLP_ENDPOINT,
    PROFILING_ENABLED,
    PYROSCOPE_SERVER,
    SERVICE_NAME
)

logger = logging.getLogger(__name__)


def init_tracing() -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Returns:
        Tracer instance
    """
    if OTEL_ENABLED:
        resource = Resource.create({"service.name": SERVICE_NAME})

        tracer_provider = TracerProvider(resource=resource)
        otlp_span_exporter = OTLPSpanExporter(
            endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
        trace.set_tracer_provider(tracer_provider)

        logger.info(f"Tracing initialized with endpoint: {OTEL_EXPORTER_OTLP_ENDPOINT}")

    return trace.get_tracer(__name__)


def init_metrics() -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Returns:
        Meter instance
    """
    if OTEL_ENABLED:
        resource = Resource.create({"service.name": SERVICE_NAME})

        otlp_metric_exporter = OTLPMetricExporter(
            endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True
        )
        otlp_metric_reader = PeriodicExportingMetricReader(
            otlp_metric_exporter,
            export_interval_millis=5000
        )

        meter_provider = MeterProvider(
            resource=resource,
            metric_readers=[otlp_metric_reader]
        )
        metrics.set_meter_provider(meter_provider)

        logger.info("Metrics initialized with OTLP exporter")

    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Initialize Pyroscope profiling."""
    if not PROFILING_ENABLED:
        return
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"env": "demo"}
        )
        logger.info(f"Profiling initialized with server: {PYROSCOPE_SERVER}")
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


# Initialize tracer and meter
tracer = init_tracing()
meter = init_metrics()

# Catalog metrics
product_views_counter = meter.create_counter(
    "storefront.products.views",
    description="Total number of catalog listings served, by category filter",
    unit="1"
)

cart_additions_counter = meter.create_counter(
    "storefront.cart.additions",
    description="Total number of units added to carts",
    unit="1"
)

# Checkout metrics
checkout_counter = meter.create_counter(
    "storefront.checkouts",
    description="Checkout attempts by outcome",
    unit="1"
)

checkout_amount_histogram = meter.create_histogram(
    "storefront.checkout.amount",
    description="Cart total submitted to the checkout procedure",
    unit="DH"
)

checkout_duration_histogram = meter.create_histogram(
    "storefront.checkout.duration",
    description="Duration of the atomic checkout procedure call",
    unit="s"
)

# Wallet and loyalty metrics
wallet_deposits_counter = meter.create_counter(
    "storefront.wallet.deposits",
    description="Wallet deposits by outcome",
    unit="1"
)

points_redemptions_counter = meter.create_counter(
    "storefront.points.redemptions",
    description="Point shop redemptions by outcome",
    unit="1"
)

# Mutations that were applied but whose follow-up audit write failed
partial_failures_counter = meter.create_counter(
    "storefront.partial_failures",
    description="Applied mutations whose history or audit entry could not be written",
    unit="1"
)

tournament_registrations_counter = meter.create_counter(
    "storefront.tournaments.registrations",
    description="Tournament registrations by outcome",
    unit="1"
)

# Order support chat metrics
chat_messages_counter = meter.create_counter(
    "storefront.chat.messages",
    description="Order chat messages sent, by outcome",
    unit="1"
)

realtime_events_counter = meter.create_counter(
    "storefront.realtime.events",
    description="Realtime insert events received by chat views, by disposition",
    unit="1"
)

# Security monitoring metrics
auth_attempts_counter = meter.create_counter(
    "storefront.auth.attempts",
    description="Total number of authentication attempts",
    unit="1"
)

auth_failures_counter = meter.create_counter(
    "storefront.auth.failures",
    description="Total number of authentication failures",
    unit="1"
)

admin_actions_counter = meter.create_counter(
    "storefront.admin.actions",
    description="Back-office mutations by action",
    unit="1"
)

# External service call metrics
gateway_duration_histogram = meter.create_histogram(
    "storefront.external.gateway.duration",
    description="Duration of hosted gateway calls",
    unit="s"
)

assistant_duration_histogram = meter.create_histogram(
    "storefront.external.assistant.duration",
    description="Duration of completion provider calls",
    unit="s"
)
