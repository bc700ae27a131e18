"""
Monitoring Module

Prometheus metrics for orchestrator runs.
"""

from .metrics import MetricsCollector, MetricValue

__all__ = [
    "MetricsCollector",
    "MetricValue",
]
