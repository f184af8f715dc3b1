"""OpenTelemetry instrumentation for the toolchain runner.

Provides traces and metrics for the fetch and test steps. When disabled, the
OpenTelemetry API's no-op providers are used so the call sites stay the same.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

from .config import OTELConfig

logger = logging.getLogger(__name__)


class OTELInstrumentation:
    """OpenTelemetry instrumentation manager."""

    def __init__(self, config: OTELConfig):
        """Initialize OTEL instrumentation.

        Args:
            config: OTEL configuration
        """
        self.config = config
        self.tracer: Optional[trace.Tracer] = None
        self.meter: Optional[metrics.Meter] = None
        self.trace_provider: Optional[TracerProvider] = None
        self.meter_provider: Optional[MeterProvider] = None

        # Metrics
        self.fetch_counter: Optional[metrics.Counter] = None
        self.fetch_latency_histogram: Optional[metrics.Histogram] = None
        self.fetch_size_histogram: Optional[metrics.Histogram] = None
        self.test_runs_counter: Optional[metrics.Counter] = None
        self.test_duration_histogram: Optional[metrics.Histogram] = None
        self._requests_instrumented = False

    def initialize(self) -> None:
        """Initialize OTEL providers and instruments."""
        if not self.config.enabled:
            logger.debug("OpenTelemetry export disabled, using no-op providers")
            self.tracer = trace.get_tracer(__name__)
            self.meter = metrics.get_meter(__name__)
            self._create_instruments()
            return

        logger.info("Initializing OpenTelemetry instrumentation")

        resource = Resource.create(self._resource_attributes())

        self._initialize_tracing(resource)
        self._initialize_auto_instrumentation()
        self._initialize_metrics(resource)

        logger.info("OpenTelemetry instrumentation initialized")

    def _resource_attributes(self) -> dict:
        """Build resource attributes (format: key1=val1,key2=val2)."""
        resource_attrs = {"service.name": self.config.service_name}
        if self.config.resource_attributes:
            for attr in self.config.resource_attributes.split(","):
                if "=" in attr:
                    key, value = attr.split("=", 1)
                    resource_attrs[key.strip()] = value.strip()
        return resource_attrs

    def _initialize_tracing(self, resource: Resource) -> None:
        """Initialize tracing provider and exporter."""
        self.trace_provider = TracerProvider(resource=resource)

        if self.config.exporter_endpoint:
            logger.info(f"Configuring OTLP trace exporter: {self.config.exporter_endpoint}")
            span_exporter = OTLPSpanExporter(
                endpoint=self.config.exporter_endpoint,
                insecure=self.config.exporter_insecure,
            )
        else:
            logger.info("Using console trace exporter (no OTLP endpoint configured)")
            span_exporter = ConsoleSpanExporter()

        self.trace_provider.add_span_processor(BatchSpanProcessor(span_exporter))
        trace.set_tracer_provider(self.trace_provider)

        self.tracer = trace.get_tracer(__name__)

    def _initialize_auto_instrumentation(self) -> None:
        """Initialize opt-in auto instrumentation."""
        if not self.config.instrument_requests:
            logger.info("Requests auto-instrumentation disabled")
            return

        if self._requests_instrumented:
            return

        RequestsInstrumentor().instrument()
        self._requests_instrumented = True
        logger.info("Enabled OpenTelemetry requests auto-instrumentation")

    def _initialize_metrics(self, resource: Resource) -> None:
        """Initialize metrics provider and instruments."""
        metric_readers = []

        if self.config.exporter_endpoint:
            logger.info(f"Configuring OTLP metric exporter: {self.config.exporter_endpoint}")
            metric_exporter = OTLPMetricExporter(
                endpoint=self.config.exporter_endpoint,
                insecure=self.config.exporter_insecure,
            )
            metric_readers.append(PeriodicExportingMetricReader(metric_exporter))
        else:
            logger.info("No OTLP endpoint configured, metrics will not be exported")

        self.meter_provider = MeterProvider(
            resource=resource,
            metric_readers=metric_readers,
        )
        metrics.set_meter_provider(self.meter_provider)

        self.meter = metrics.get_meter(__name__)
        self._create_instruments()

    def _create_instruments(self) -> None:
        """Create metric instruments on the current meter."""
        self.fetch_counter = self.meter.create_counter(
            name="toolchain_runner_fetches_total",
            description="Total number of toolchain pin fetches",
            unit="1",
        )

        self.fetch_latency_histogram = self.meter.create_histogram(
            name="toolchain_runner_fetch_latency_ms",
            description="Toolchain pin fetch latency in milliseconds",
            unit="ms",
        )

        self.fetch_size_histogram = self.meter.create_histogram(
            name="toolchain_runner_fetch_size_bytes",
            description="Size of the fetched toolchain pin in bytes",
            unit="By",
        )

        self.test_runs_counter = self.meter.create_counter(
            name="toolchain_runner_test_runs_total",
            description="Total number of test command runs",
            unit="1",
        )

        self.test_duration_histogram = self.meter.create_histogram(
            name="toolchain_runner_test_duration_ms",
            description="Test command duration in milliseconds",
            unit="ms",
        )

    @contextmanager
    def step_span(self, name: str, **attributes) -> Iterator[trace.Span]:
        """Create a span for one runner step.

        Args:
            name: Step name, used as the ``toolchain_runner.<name>`` span name
            **attributes: Span attributes set on entry

        Yields:
            Span object for adding events and attributes
        """
        if not self.tracer:
            raise RuntimeError("OTEL not initialized")

        with self.tracer.start_as_current_span(f"toolchain_runner.{name}") as span:
            for key, value in attributes.items():
                span.set_attribute(key, value)
            yield span

    def record_fetch_success(self, span: trace.Span, bytes_written: int, duration_ms: float) -> None:
        """Record a completed fetch.

        Args:
            span: Current span
            bytes_written: Size of the written file
            duration_ms: Fetch duration in milliseconds
        """
        span.set_attribute("fetch.bytes", bytes_written)
        span.set_attribute("fetch.duration_ms", duration_ms)
        span.set_status(Status(StatusCode.OK))

        if self.fetch_counter:
            self.fetch_counter.add(1, {"status": "success"})
        if self.fetch_latency_histogram:
            self.fetch_latency_histogram.record(duration_ms)
        if self.fetch_size_histogram:
            self.fetch_size_histogram.record(bytes_written)

    def record_failure(self, span: trace.Span, step: str, error: Exception) -> None:
        """Record a step that raised instead of completing.

        Args:
            span: Current span
            step: Either ``"fetch"`` or ``"tests"``
            error: Exception that caused failure
        """
        error_type = type(error).__name__
        span.add_event(
            f"{step}_failed",
            attributes={
                "error.type": error_type,
                "error.message": str(error),
            },
        )
        span.set_status(Status(StatusCode.ERROR, str(error)))
        span.record_exception(error)

        counter = self.fetch_counter if step == "fetch" else self.test_runs_counter
        if counter:
            counter.add(1, {"status": "failed", "error_type": error_type})

    def record_test_exit(self, span: trace.Span, exit_code: int, duration_ms: float) -> None:
        """Record the test command's exit code.

        Args:
            span: Current span
            exit_code: Exit code of the test command
            duration_ms: Command duration in milliseconds
        """
        span.set_attribute("process.exit_code", exit_code)
        if exit_code == 0:
            span.set_status(Status(StatusCode.OK))
        else:
            span.set_status(Status(StatusCode.ERROR, f"exit code {exit_code}"))

        status = "success" if exit_code == 0 else "failed"
        if self.test_runs_counter:
            self.test_runs_counter.add(1, {"status": status})
        if self.test_duration_histogram:
            self.test_duration_histogram.record(duration_ms)

    def shutdown(self) -> None:
        """Flush and shut down SDK providers installed by this instance."""
        if self.trace_provider is not None:
            self.trace_provider.shutdown()
            self.trace_provider = None
        if self.meter_provider is not None:
            self.meter_provider.shutdown()
            self.meter_provider = None
        if self._requests_instrumented:
            RequestsInstrumentor().uninstrument()
            self._requests_instrumented = False
