# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Observability components for RewardSync.

Provides Prometheus metrics for dispatch, draining and evolution tracking.
"""

from .metrics import MetricsCollector, start_metrics_server

__all__ = [
    "MetricsCollector",
    "start_metrics_server",
]
