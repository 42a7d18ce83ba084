"""Tests for the Prometheus metrics collector."""

import sys
from unittest.mock import patch

import pytest

from rewardsync.observability import MetricsCollector

from conftest import FakeContract, build_dispatcher, make_event

prometheus_client = pytest.importorskip("prometheus_client")


@pytest.fixture
def collector():
    return MetricsCollector(registry=prometheus_client.CollectorRegistry())


class TestMetricsCollector:
    def test_enabled_when_prometheus_available(self, collector):
        assert collector.enabled is True

    def test_collectors_are_independent(self):
        first = MetricsCollector()
        second = MetricsCollector()
        first.record_dispatch("SUCCESS")
        assert second.registry.get_sample_value(
            "rewardsync_dispatch_total", {"outcome": "success"}
        ) is None

    def test_records(self, collector):
        collector.record_dispatch("SUCCESS")
        collector.record_dispatch("QUEUE")
        collector.record_retry("NETWORK_TIMEOUT")
        collector.set_queue_depth(3)
        collector.observe_drain(0.25)
        collector.record_evolution("COMPLETED")

        value = collector.registry.get_sample_value
        assert value("rewardsync_dispatch_total", {"outcome": "success"}) == 1
        assert value("rewardsync_dispatch_total", {"outcome": "queue"}) == 1
        assert value("rewardsync_retry_total", {"error_kind": "NETWORK_TIMEOUT"}) == 1
        assert value("rewardsync_queue_depth") == 3
        assert value("rewardsync_drain_duration_seconds_count") == 1
        assert value("rewardsync_evolution_total", {"stage": "completed"}) == 1

    def test_export(self, collector):
        collector.record_dispatch("TERMINAL_FAILURE")
        text = collector.export().decode()
        assert "rewardsync_dispatch_total" in text
        assert 'outcome="terminal_failure"' in text

    @pytest.mark.asyncio
    async def test_dispatcher_records_outcomes(self, collector, ledger, queue, wallet):
        dispatcher = build_dispatcher(ledger, queue, wallet, FakeContract(), metrics=collector)
        await dispatcher.dispatch(make_event())

        assert collector.registry.get_sample_value(
            "rewardsync_dispatch_total", {"outcome": "success"}
        ) == 1


class TestGracefulWithoutPrometheus:
    def test_disabled_when_import_fails(self):
        with patch.dict(sys.modules, {"prometheus_client": None}):
            collector = MetricsCollector()

        assert collector.enabled is False
        assert collector.export() == b""
        # Recording methods are no-ops
        collector.record_dispatch("SUCCESS")
        collector.record_retry("UNKNOWN")
        collector.set_queue_depth(1)
        collector.observe_drain(0.1)
        collector.record_evolution("FAILED")
