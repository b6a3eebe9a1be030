"""Tests for telemetry module."""

from unittest.mock import MagicMock, patch

from agentloop.config import AgentConfig
from agentloop.models import AgentMode


class TestSetupTelemetry:
    """Test setup_telemetry function."""

    def test_setup_returns_tracer_and_meter(self):
        """setup_telemetry should return a tracer and meter."""
        from agentloop.telemetry import setup_telemetry

        tracer, meter = setup_telemetry(AgentConfig())

        assert tracer is not None
        assert meter is not None

    def test_disabled_export_creates_no_exporters(self):
        """Without otlp_enabled nothing is exported."""
        from agentloop.telemetry import setup_telemetry

        with patch(
            "opentelemetry.exporter.otlp.proto.grpc.trace_exporter.OTLPSpanExporter"
        ) as mock_span_exporter:
            setup_telemetry(AgentConfig(otlp_enabled=False))

        mock_span_exporter.assert_not_called()

    def test_uses_otlp_endpoint_from_config(self):
        """Should export to the configured endpoint when enabled."""
        from agentloop.telemetry import setup_telemetry

        config = AgentConfig(otlp_enabled=True, otlp_endpoint="http://collector:4317")

        with patch(
            "opentelemetry.exporter.otlp.proto.grpc.trace_exporter.OTLPSpanExporter"
        ) as mock_span_exporter:
            with patch(
                "opentelemetry.exporter.otlp.proto.grpc.metric_exporter.OTLPMetricExporter"
            ) as mock_metric_exporter:
                with patch("opentelemetry.sdk.trace.export.BatchSpanProcessor"):
                    with patch(
                        "opentelemetry.sdk.metrics.export.PeriodicExportingMetricReader"
                    ):
                        with patch("agentloop.telemetry.MeterProvider"):
                            setup_telemetry(config)

        mock_span_exporter.assert_called_with(endpoint="http://collector:4317")
        mock_metric_exporter.assert_called_with(endpoint="http://collector:4317")


class TestAgentResource:
    """Test the resource attached to every span and metric."""

    def test_identifies_agent(self):
        """The resource carries service, version, agent id and mode."""
        from agentloop import __version__
        from agentloop.telemetry import agent_resource

        config = AgentConfig(agent_id="agent-3", mode=AgentMode.INTERACTIVE)

        attributes = agent_resource(config).attributes

        assert attributes["service.name"] == "agentloop"
        assert attributes["service.version"] == __version__
        assert attributes["agent.id"] == "agent-3"
        assert attributes["agent.mode"] == "interactive"


class TestShutdownTelemetry:
    """Test flushing providers on exit."""

    def test_shuts_down_installed_providers(self):
        """Every provider installed by setup is shut down once."""
        from agentloop import telemetry

        tracer_provider = MagicMock()
        meter_provider = MagicMock()
        with patch(
            "agentloop.telemetry.TracerProvider", return_value=tracer_provider
        ), patch("agentloop.telemetry.MeterProvider", return_value=meter_provider), patch(
            "agentloop.telemetry.trace.set_tracer_provider"
        ), patch("agentloop.telemetry.metrics.set_meter_provider"):
            telemetry.setup_telemetry(AgentConfig())

        telemetry.shutdown_telemetry()
        telemetry.shutdown_telemetry()

        tracer_provider.shutdown.assert_called_once()
        meter_provider.shutdown.assert_called_once()

    def test_shutdown_errors_are_logged(self):
        """A provider failing to flush does not raise."""
        from agentloop import telemetry

        provider = MagicMock()
        provider.shutdown.side_effect = RuntimeError("collector gone")
        telemetry._providers[:] = [provider]

        telemetry.shutdown_telemetry()

        assert telemetry._providers == []


class TestCreateMetrics:
    """Test create_metrics function."""

    def test_creates_instruments(self):
        """create_metrics should create every lifecycle instrument."""
        from agentloop import telemetry

        meter = MagicMock()
        telemetry.create_metrics(meter)

        counter_names = [c[0][0] for c in meter.create_counter.call_args_list]
        assert counter_names == [
            "agentloop_tasks_total",
            "agentloop_push_attempts_total",
            "agentloop_approval_rounds_total",
            "agentloop_idle_cycles_total",
        ]
        meter.create_histogram.assert_called_once()
        assert (
            meter.create_histogram.call_args[0][0] == "agentloop_task_duration_seconds"
        )
        assert telemetry.tasks_counter is meter.create_counter.return_value
