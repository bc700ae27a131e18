"""
Metrics Collection

Prometheus metrics for orchestrator runs: how often each target ran, how it
ended and how long it took, plus a count of external commands by program
and outcome. Metrics live in a private registry so several collectors can
coexist in one process, and are pushed to a Prometheus push gateway at the
end of a run when one is configured.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram, push_to_gateway


@dataclass
class MetricValue:
    """Represents a single metric value with metadata."""
    name: str
    value: Union[int, float]
    timestamp: datetime
    labels: Dict[str, str] = field(default_factory=dict)


class MetricsCollector:
    """
    Collects run metrics for the orchestrator.

    Counters and histograms are declared up front; ``increment_counter`` and
    ``record_histogram`` look them up by name and keep a local copy
    of every sample so ``get_summary`` works without a Prometheus server.
    """

    def __init__(
        self,
        prometheus_gateway: Optional[str] = None,
        job_name: str = "basemap_orchestrator",
    ):
        """
        Initialize the metrics collector.

        Args:
            prometheus_gateway: Push gateway address, ``None`` disables pushing
            job_name: Job label used when pushing
        """
        self.prometheus_gateway = prometheus_gateway
        self.job_name = job_name
        self.logger = structlog.get_logger(component="MetricsCollector")

        self.registry = CollectorRegistry()
        self.counters: Dict[str, Counter] = {}
        self.histograms: Dict[str, Histogram] = {}
        self.samples: List[MetricValue] = []
        self._init_prometheus()

    def _init_prometheus(self) -> None:
        self._create_metric(
            "counter", "basemap_targets_total",
            "Targets executed by the orchestrator",
            ["target", "status"],
        )
        self._create_metric(
            "histogram", "basemap_target_duration_seconds",
            "Wall clock duration of each target",
            ["target"],
        )
        self._create_metric(
            "counter", "basemap_commands_total",
            "External commands run by the orchestrator",
            ["program", "status"],
        )

    def _create_metric(self, metric_type: str, name: str, description: str, labels: List[str]) -> None:
        if metric_type == "counter":
            self.counters[name] = Counter(name, description, labels, registry=self.registry)
        elif metric_type == "histogram":
            self.histograms[name] = Histogram(name, description, labels, registry=self.registry)
        else:
            raise ValueError(f"Unsupported metric type: {metric_type}")

    def increment_counter(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        labels = labels or {}
        counter = self.counters.get(name)
        if counter is None:
            raise KeyError(f"Unknown counter: {name}")
        counter.labels(**labels).inc(value)
        self.samples.append(MetricValue(name, value, datetime.now(), labels))

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        labels = labels or {}
        histogram = self.histograms.get(name)
        if histogram is None:
            raise KeyError(f"Unknown histogram: {name}")
        histogram.labels(**labels).observe(value)
        self.samples.append(MetricValue(name, value, datetime.now(), labels))

    def record_target(self, target: str, status: str, duration_seconds: float) -> None:
        """Record one finished target (status: success, failed, ignored)."""
        self.increment_counter("basemap_targets_total", labels={"target": target, "status": status})
        self.record_histogram("basemap_target_duration_seconds", duration_seconds, labels={"target": target})

    def record_command(self, program: str, status: str) -> None:
        self.increment_counter("basemap_commands_total", labels={"program": program, "status": status})

    def get_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Current value of a sample in the private registry."""
        return self.registry.get_sample_value(name, labels or {})

    def get_summary(self) -> Dict[str, Any]:
        """
        Summarize recorded target runs.

        Returns:
            Dictionary with per-target run counts by status and the total
            recorded duration in seconds
        """
        targets: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        total_duration = 0.0
        commands = 0

        for sample in self.samples:
            if sample.name == "basemap_targets_total":
                targets[sample.labels["target"]][sample.labels["status"]] += int(sample.value)
            elif sample.name == "basemap_target_duration_seconds":
                total_duration += sample.value
            elif sample.name == "basemap_commands_total":
                commands += int(sample.value)

        return {
            "targets": {name: dict(statuses) for name, statuses in targets.items()},
            "total_duration_seconds": total_duration,
            "commands": commands,
        }

    def push_to_prometheus_gateway(self) -> bool:
        """Push the registry to the configured gateway; failures are logged only."""
        if not self.prometheus_gateway:
            return False

        try:
            push_to_gateway(self.prometheus_gateway, job=self.job_name, registry=self.registry)
        except (OSError, ValueError) as e:
            self.logger.warning(
                "Failed to push metrics to Prometheus gateway",
                gateway=self.prometheus_gateway,
                error=str(e),
            )
            return False

        self.logger.info("Metrics pushed to Prometheus gateway", gateway=self.prometheus_gateway)
        return True
