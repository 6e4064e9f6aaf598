"""Export emitted metrics through OpenTelemetry."""

from __future__ import annotations

import logging
from typing import Any

from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.metrics import Meter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource

from agent_orchestrator import __version__
from agent_orchestrator.config import MetricsSettings
from agent_orchestrator.metrics import Metric, MetricsEmitter

logger = logging.getLogger(__name__)

INSTRUMENTATION_NAME = "agent_orchestrator"

# Monotonic totals; everything else is a last-value reading.
COUNTER_METRICS = frozenset(
    {
        "llm_tokens_in",
        "llm_tokens_out",
        "llm_provider_failures",
        "state_transitions",
        "run_completed",
    },
)


class OpenTelemetryMetricsExporter:
    """Metric listener that records each sample on an OpenTelemetry instrument.

    Instruments are created on first use and cached by metric name. Counter
    metrics are added, the rest are set on a gauge; labels become attributes.
    """

    def __init__(self, meter: Meter, *, provider: MeterProvider | None = None) -> None:
        self.meter = meter
        self.provider = provider
        self._instruments: dict[str, Any] = {}
        self._emitter: MetricsEmitter | None = None

    def __call__(self, metric: Metric) -> None:
        attributes = dict(metric.labels)
        if metric.name in COUNTER_METRICS:
            self._instrument(metric.name, counter=True).add(metric.value, attributes=attributes)
        else:
            self._instrument(metric.name, counter=False).set(metric.value, attributes=attributes)

    def attach(self, emitter: MetricsEmitter) -> OpenTelemetryMetricsExporter:
        emitter.subscribe(self)
        self._emitter = emitter
        return self

    def shutdown(self) -> None:
        """Stop listening and flush pending exports."""

        if self._emitter is not None:
            self._emitter.unsubscribe(self)
            self._emitter = None
        if self.provider is not None:
            self.provider.shutdown()
            self.provider = None

    def _instrument(self, name: str, *, counter: bool) -> Any:
        instrument = self._instruments.get(name)
        if instrument is None:
            if counter:
                instrument = self.meter.create_counter(name)
            else:
                instrument = self.meter.create_gauge(name)
            self._instruments[name] = instrument
        return instrument


def create_metrics_exporter(
    settings: MetricsSettings,
    *,
    reader: MetricReader | None = None,
) -> OpenTelemetryMetricsExporter | None:
    """Build an exporter for the configured backend, or None when disabled.

    An explicit `reader` replaces the periodic one built from settings.
    """

    if reader is None:
        if settings.backend == "none":
            return None
        reader = PeriodicExportingMetricReader(
            _build_exporter(settings.backend),
            export_interval_millis=settings.export_interval_seconds * 1000,
        )
    resource = Resource.create(
        {"service.name": settings.service_name, "service.version": __version__},
    )
    provider = MeterProvider(resource=resource, metric_readers=[reader])
    logger.info("Metrics export enabled (backend=%s)", settings.backend)
    return OpenTelemetryMetricsExporter(
        provider.get_meter(INSTRUMENTATION_NAME, __version__),
        provider=provider,
    )


def _build_exporter(backend: str) -> MetricExporter:
    if backend == "otlp":
        # Endpoint and headers come from the standard OTEL_EXPORTER_OTLP_* variables.
        return OTLPMetricExporter()
    return ConsoleMetricExporter()
