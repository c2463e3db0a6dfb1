"""Prometheus metrics for relay outcomes."""
from __future__ import annotations

from typing import Optional

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


class RelayMetrics:
    """Counters and histograms describing relay traffic."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.requests = Counter(
            "prompt_relay_requests_total",
            "Relay requests by terminal outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.provider_latency = Histogram(
            "prompt_relay_provider_latency_seconds",
            "Time until the generation provider answered",
            ["mode"],
            buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
            registry=self.registry,
        )

    def record_outcome(self, outcome: str) -> None:
        self.requests.labels(outcome=outcome).inc()

    def observe_provider_latency(self, mode: str, seconds: float) -> None:
        self.provider_latency.labels(mode=mode).observe(seconds)

    def render(self) -> Response:
        return Response(generate_latest(self.registry), media_type=CONTENT_TYPE_LATEST)


_default_metrics: Optional[RelayMetrics] = None


def get_metrics() -> RelayMetrics:
    """Return the process-wide metrics, registered once on the global registry."""

    global _default_metrics
    if _default_metrics is None:
        _default_metrics = RelayMetrics(registry=REGISTRY)
    return _default_metrics
