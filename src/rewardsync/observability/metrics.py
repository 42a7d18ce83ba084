# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Prometheus Metrics Integration.

Provides metrics collection and export for reward settlement.
"""

from __future__ import annotations

from typing import Any, Optional


class MetricsCollector:
    """
    Prometheus metrics collector for RewardSync.

    Exposes metrics:
    - rewardsync_dispatch_total{outcome="success|queue|terminal_failure"}
    - rewardsync_retry_total{error_kind="..."}
    - rewardsync_queue_depth
    - rewardsync_drain_duration_seconds
    - rewardsync_evolution_total{stage="completed|cancelled|failed"}

    Args:
        registry: Prometheus registry to register with. A private
            ``CollectorRegistry`` is created when omitted so several
            collectors can coexist in one process.
        prefix: Metric name prefix. Defaults to ``rewardsync``.
    """

    def __init__(self, registry: Optional[Any] = None, prefix: str = "rewardsync") -> None:
        try:
            from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

            self.registry = registry if registry is not None else CollectorRegistry()

            self.dispatch_total = Counter(
                f"{prefix}_dispatch_total",
                "Reward dispatch attempts by outcome",
                ["outcome"],
                registry=self.registry,
            )
            self.retry_total = Counter(
                f"{prefix}_retry_total",
                "Failed settlement attempts that were scheduled for retry",
                ["error_kind"],
                registry=self.registry,
            )
            self.queue_depth = Gauge(
                f"{prefix}_queue_depth",
                "Number of reward events waiting in the offline queue",
                registry=self.registry,
            )
            self.drain_duration = Histogram(
                f"{prefix}_drain_duration_seconds",
                "Offline queue drain duration in seconds",
                registry=self.registry,
            )
            self.evolution_total = Counter(
                f"{prefix}_evolution_total",
                "Evolution tasks by final stage",
                ["stage"],
                registry=self.registry,
            )
            self._enabled = True
        except ImportError:
            # Prometheus client not installed
            self.registry = None
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Check if metrics are enabled."""
        return self._enabled

    def record_dispatch(self, outcome: str) -> None:
        """Record one dispatch outcome (``success``, ``queue`` or ``terminal_failure``)."""
        if not self._enabled:
            return
        self.dispatch_total.labels(outcome=outcome.lower()).inc()

    def record_retry(self, error_kind: str) -> None:
        if not self._enabled:
            return
        self.retry_total.labels(error_kind=error_kind).inc()

    def set_queue_depth(self, depth: int) -> None:
        if not self._enabled:
            return
        self.queue_depth.set(depth)

    def observe_drain(self, duration_seconds: float) -> None:
        if not self._enabled:
            return
        self.drain_duration.observe(duration_seconds)

    def record_evolution(self, stage: str) -> None:
        """Record an evolution task reaching a terminal stage."""
        if not self._enabled:
            return
        self.evolution_total.labels(stage=stage.lower()).inc()

    def export(self) -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        if not self._enabled:
            return b""
        from prometheus_client import generate_latest

        return generate_latest(self.registry)


def start_metrics_server(collector: MetricsCollector, port: int = 9090) -> None:
    """Start a Prometheus HTTP endpoint serving *collector*'s registry.

    Args:
        collector: The collector whose registry is exposed.
        port: Port to listen on (default: 9090).
    """
    if not collector.enabled:
        return
    from prometheus_client import start_http_server

    start_http_server(port, registry=collector.registry)
