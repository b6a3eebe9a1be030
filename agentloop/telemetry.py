"""Telemetry setup for OpenTelemetry traces and metrics.

Every agent process reports under one resource (service, version, agent id
and mode) so a fleet of agents can be told apart in the collector. Export
over OTLP happens only when the config enables it; otherwise spans and
metrics are recorded in-process and dropped.
"""

import logging

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

from agentloop import __version__
from agentloop.config import AgentConfig

# Suppress gRPC warnings when collector is unavailable
logging.getLogger("opentelemetry.exporter.otlp.proto.grpc").setLevel(logging.ERROR)

logger = logging.getLogger(__name__)

# Module-level metric instruments (set by create_metrics)
tasks_counter: metrics.Counter
task_duration: metrics.Histogram
push_attempts_counter: metrics.Counter
approval_rounds_counter: metrics.Counter
idle_cycles_counter: metrics.Counter

# Providers installed by setup_telemetry, flushed by shutdown_telemetry
_providers: list[TracerProvider | MeterProvider] = []


def agent_resource(config: AgentConfig) -> Resource:
    """Resource attributes identifying this agent process."""
    return Resource.create(
        {
            "service.name": config.service_name,
            "service.version": __version__,
            "agent.id": config.agent_id,
            "agent.mode": config.mode.value,
        }
    )


def setup_telemetry(config: AgentConfig) -> tuple[trace.Tracer, metrics.Meter]:
    """Install tracer and meter providers for this agent.

    Args:
        config: Agent configuration (otlp_enabled, otlp_endpoint, identity)

    Returns:
        Tuple of (tracer, meter) for creating spans and recording metrics
    """
    resource = agent_resource(config)
    tracer_provider = TracerProvider(resource=resource)
    metric_readers: list[MetricReader] = []

    if config.otlp_enabled and config.otlp_endpoint:
        # Import OTLP exporters only when needed
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
            OTLPMetricExporter,
        )
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint))
        )
        metric_readers.append(
            PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=config.otlp_endpoint)
            )
        )
        logger.info(f"Telemetry for {config.agent_id} exporting to {config.otlp_endpoint}")
    else:
        logger.debug("OTLP export disabled, telemetry stays in-process")

    meter_provider = MeterProvider(resource=resource, metric_readers=metric_readers)
    trace.set_tracer_provider(tracer_provider)
    metrics.set_meter_provider(meter_provider)
    _providers[:] = [tracer_provider, meter_provider]

    tracer = trace.get_tracer(config.service_name, __version__)
    meter = metrics.get_meter(config.service_name, __version__)
    return tracer, meter


def shutdown_telemetry() -> None:
    """Flush pending spans and metrics before the agent process exits.

    An agent that stops after its idle cycles would otherwise lose the
    batch holding its last task.
    """
    while _providers:
        provider = _providers.pop()
        try:
            provider.shutdown()
        except Exception as e:
            logger.warning(f"Telemetry shutdown failed: {e}")


def create_metrics(meter: metrics.Meter) -> None:
    """Create metric instruments for lifecycle tracking.

    Counters:
    - Task attempts (by outcome and failure reason)
    - Push attempts (by result)
    - Approval rounds
    - Idle cycles

    Histograms:
    - Task attempt duration

    Args:
        meter: OpenTelemetry meter for creating instruments
    """
    global tasks_counter, task_duration, push_attempts_counter
    global approval_rounds_counter, idle_cycles_counter

    tasks_counter = meter.create_counter(
        "agentloop_tasks_total",
        description="Total task attempts by outcome",
    )

    task_duration = meter.create_histogram(
        "agentloop_task_duration_seconds",
        description="Task attempt duration",
        unit="s",
    )

    push_attempts_counter = meter.create_counter(
        "agentloop_push_attempts_total",
        description="Total push attempts to the baseline",
    )

    approval_rounds_counter = meter.create_counter(
        "agentloop_approval_rounds_total",
        description="Total approval review rounds",
    )

    idle_cycles_counter = meter.create_counter(
        "agentloop_idle_cycles_total",
        description="Total polls that found no ready work",
    )

