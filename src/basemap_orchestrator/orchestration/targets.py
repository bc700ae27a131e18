"""
Target Registry

Named pipeline steps with prerequisites, resolved the way ``make`` resolves
phony targets:

- prerequisites run before the target, depth first, in declared order
- a target runs at most once per invocation, however many requested
  targets depend on it
- unknown names, prerequisite cycles and failed prechecks are rejected
  before anything runs
- the first failing target stops the run, unless it is marked
  ``ignore_errors``
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

import structlog

from ..exceptions import DependencyCycleError, OrchestratorError, UnknownTargetError
from ..monitoring.metrics import MetricsCollector


@dataclass
class Target:
    """A named step of the pipeline."""
    name: str
    action: Optional[Callable[[], None]] = None
    depends_on: List[str] = field(default_factory=list)
    description: str = ""
    ignore_errors: bool = False
    precheck: Optional[Callable[[], None]] = None


@dataclass
class RunSummary:
    """Targets executed by one ``TargetRegistry.execute`` call."""
    executed: List[str] = field(default_factory=list)
    durations: Dict[str, float] = field(default_factory=dict)
    ignored_failures: List[str] = field(default_factory=list)

    @property
    def total_duration_seconds(self) -> float:
        return sum(self.durations.values())


class TargetRegistry:
    """Holds targets and executes them in dependency order."""

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self._targets: Dict[str, Target] = {}
        self.metrics = metrics
        self.logger = structlog.get_logger(component="TargetRegistry")

    def add(self, target: Target) -> Target:
        if target.name in self._targets:
            raise ValueError(f"Target already registered: {target.name}")
        self._targets[target.name] = target
        return target

    def get(self, name: str) -> Target:
        try:
            return self._targets[name]
        except KeyError:
            raise UnknownTargetError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._targets

    def names(self) -> List[str]:
        return list(self._targets)

    def targets(self) -> List[Target]:
        return list(self._targets.values())

    def resolve(self, requested: Iterable[str]) -> List[Target]:
        """
        Order targets so every prerequisite precedes its dependents.

        Args:
            requested: Target names in the order they were asked for

        Returns:
            Targets to run, each exactly once

        Raises:
            UnknownTargetError: A requested name or prerequisite is not registered
            DependencyCycleError: Prerequisites loop back on themselves
        """
        ordered: List[Target] = []
        done: Set[str] = set()

        def visit(name: str, chain: List[str]) -> None:
            if name in done:
                return
            if name in chain:
                raise DependencyCycleError(chain[chain.index(name):] + [name])
            target = self.get(name)
            for prerequisite in target.depends_on:
                visit(prerequisite, chain + [name])
            done.add(name)
            ordered.append(target)

        for name in requested:
            visit(name, [])
        return ordered

    def execute(self, requested: Iterable[str]) -> RunSummary:
        """Resolve and run the requested targets."""
        plan = self.resolve(list(requested))
        summary = RunSummary()
        self.logger.debug("Execution plan", targets=[target.name for target in plan])

        # prechecks of the whole plan run before the first action
        for target in plan:
            if target.precheck is not None:
                target.precheck()

        for target in plan:
            start = time.monotonic()
            status = "success"
            try:
                if target.action is not None:
                    self.logger.info("Starting target", target=target.name)
                    target.action()
            except OrchestratorError as e:
                if not target.ignore_errors:
                    self._record(target.name, "failed", time.monotonic() - start)
                    self.logger.error("Target failed", target=target.name, error=str(e))
                    raise
                status = "ignored"
                summary.ignored_failures.append(target.name)
                self.logger.warning("Target failed (ignored)", target=target.name, error=str(e))

            duration = time.monotonic() - start
            self._record(target.name, status, duration)
            summary.executed.append(target.name)
            summary.durations[target.name] = duration
            if target.action is not None:
                self.logger.info(
                    "Finished target",
                    target=target.name,
                    duration_seconds=round(duration, 3),
                )

        return summary

    def _record(self, name: str, status: str, duration: float) -> None:
        if self.metrics is not None:
            self.metrics.record_target(name, status, duration)
