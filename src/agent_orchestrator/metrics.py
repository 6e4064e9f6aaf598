"""Fire-and-forget metrics and event sink."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Metric:
    """One emitted metric sample."""

    name: str
    value: float
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class Event:
    """One emitted lifecycle event."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)


MetricListener = Callable[[Metric], None]
EventListener = Callable[[Event], None]


class MetricsEmitter:
    """Fan out metrics to listeners without delivery guarantees.

    A failing listener is logged and skipped; emitters never raise into the
    calling code path.
    """

    def __init__(self) -> None:
        self._metric_listeners: list[MetricListener] = []
        self._event_listeners: list[EventListener] = []

    def subscribe(self, listener: MetricListener) -> None:
        if listener not in self._metric_listeners:
            self._metric_listeners.append(listener)

    def unsubscribe(self, listener: MetricListener) -> None:
        if listener in self._metric_listeners:
            self._metric_listeners.remove(listener)

    def subscribe_events(self, listener: EventListener) -> None:
        if listener not in self._event_listeners:
            self._event_listeners.append(listener)

    def unsubscribe_events(self, listener: EventListener) -> None:
        if listener in self._event_listeners:
            self._event_listeners.remove(listener)

    def emit(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        """Publish one metric sample."""

        metric = Metric(name=name, value=value, labels=dict(labels or {}))
        logger.debug("metric %s=%s %s", metric.name, metric.value, metric.labels)
        for listener in tuple(self._metric_listeners):
            try:
                listener(metric)
            except Exception:  # noqa: BLE001
                logger.warning("Metric listener failed for %s", name, exc_info=True)

    def emit_event(self, name: str, payload: dict[str, Any] | None = None) -> None:
        """Publish one lifecycle event."""

        event = Event(name=name, payload=dict(payload or {}))
        logger.debug("event %s %s", event.name, event.payload)
        for listener in tuple(self._event_listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.warning("Event listener failed for %s", name, exc_info=True)


class MetricsRecorder:
    """In-memory listener capturing metrics and events."""

    def __init__(self) -> None:
        self.metrics: list[Metric] = []
        self.events: list[Event] = []

    def attach(self, emitter: MetricsEmitter) -> MetricsRecorder:
        emitter.subscribe(self.metrics.append)
        emitter.subscribe_events(self.events.append)
        return self

    def values(self, name: str) -> list[float]:
        """All recorded values for one metric name, in emission order."""

        return [metric.value for metric in self.metrics if metric.name == name]

    def by_name(self, name: str) -> list[Metric]:
        return [metric for metric in self.metrics if metric.name == name]


default_emitter = MetricsEmitter()
