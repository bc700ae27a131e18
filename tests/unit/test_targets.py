"""
Unit Tests for the Target Registry

Dependency ordering, run-once semantics, failure handling and prechecks.
"""

import unittest
from unittest.mock import Mock

from basemap_orchestrator.exceptions import (
    CommandFailedError,
    DependencyCycleError,
    MissingParameterError,
    UnknownTargetError,
)
from basemap_orchestrator.monitoring.metrics import MetricsCollector
from basemap_orchestrator.orchestration.targets import Target, TargetRegistry


class TestTargetRegistry(unittest.TestCase):
    """Test suite for TargetRegistry."""

    def setUp(self):
        self.calls = []
        self.metrics = MetricsCollector()
        self.registry = TargetRegistry(self.metrics)

    def _add(self, name, depends_on=(), **kwargs):
        def action():
            self.calls.append(name)
        return self.registry.add(Target(name, action, list(depends_on), **kwargs))

    def test_prerequisites_run_first_in_declared_order(self):
        self._add("init-dirs")
        self._add("build-mapping", ["init-dirs"])
        self._add("build-sql", ["init-dirs"])
        self.registry.add(Target("all", None, ["build-mapping", "build-sql"]))
        self._add("start-db-nowait")
        self._add("import-osm", ["all", "start-db-nowait"])

        summary = self.registry.execute(["import-osm"])

        self.assertEqual(self.calls, ["init-dirs", "build-mapping", "build-sql", "start-db-nowait", "import-osm"])
        self.assertEqual(
            summary.executed,
            ["init-dirs", "build-mapping", "build-sql", "all", "start-db-nowait", "import-osm"],
        )

    def test_shared_prerequisite_runs_once(self):
        self._add("start-db-nowait")
        self._add("start-db", ["start-db-nowait"])
        self._add("import-borders", ["start-db-nowait"])
        self._add("import-data", ["start-db"])

        self.registry.execute(["import-borders", "import-data", "start-db"])

        self.assertEqual(self.calls, ["start-db-nowait", "import-borders", "start-db", "import-data"])

    def test_unknown_target_rejected_before_running(self):
        self._add("init-dirs")

        with self.assertRaises(UnknownTargetError) as context:
            self.registry.execute(["init-dirs", "no-such-target"])

        self.assertEqual(context.exception.name, "no-such-target")
        self.assertEqual(context.exception.exit_code, 2)
        self.assertEqual(self.calls, [])

    def test_unknown_prerequisite_rejected(self):
        self._add("generate-tiles", ["missing"])

        with self.assertRaises(UnknownTargetError):
            self.registry.resolve(["generate-tiles"])

    def test_cycle_detected(self):
        self._add("a", ["b"])
        self._add("b", ["c"])
        self._add("c", ["a"])

        with self.assertRaises(DependencyCycleError) as context:
            self.registry.execute(["a"])

        self.assertEqual(context.exception.chain, ["a", "b", "c", "a"])
        self.assertEqual(self.calls, [])

    def test_duplicate_registration_rejected(self):
        self._add("clean")

        with self.assertRaises(ValueError):
            self._add("clean")

    def test_failure_stops_the_run(self):
        self._add("start-db-nowait")
        self.registry.add(Target(
            "start-db",
            Mock(side_effect=CommandFailedError(["docker-compose", "run"], 3)),
            ["start-db-nowait"],
        ))
        self._add("import-data", ["start-db"])

        with self.assertRaises(CommandFailedError) as context:
            self.registry.execute(["import-data"])

        self.assertEqual(context.exception.exit_code, 3)
        self.assertEqual(self.calls, ["start-db-nowait"])
        self.assertEqual(
            self.metrics.get_value("basemap_targets_total", {"target": "start-db", "status": "failed"}),
            1.0,
        )

    def test_ignored_failure_continues(self):
        self.registry.add(Target(
            "stop-maputnik",
            Mock(side_effect=CommandFailedError(["docker", "rm", "-f", "maputnik_editor"], 1)),
            ignore_errors=True,
        ))
        self._add("start-maputnik", ["stop-maputnik"])

        summary = self.registry.execute(["start-maputnik"])

        self.assertEqual(self.calls, ["start-maputnik"])
        self.assertEqual(summary.ignored_failures, ["stop-maputnik"])
        self.assertEqual(
            self.metrics.get_value("basemap_targets_total", {"target": "stop-maputnik", "status": "ignored"}),
            1.0,
        )

    def test_non_orchestrator_errors_propagate(self):
        self.registry.add(Target("broken", Mock(side_effect=RuntimeError("boom")), ignore_errors=True))

        with self.assertRaises(RuntimeError):
            self.registry.execute(["broken"])

    def test_prechecks_run_before_any_action(self):
        self._add("refresh-docker-images")
        precheck = Mock(side_effect=MissingParameterError("area", ["usage"]))
        self.registry.add(Target("quickstart", None, ["refresh-docker-images"], precheck=precheck))

        with self.assertRaises(MissingParameterError):
            self.registry.execute(["quickstart"])

        precheck.assert_called_once_with()
        self.assertEqual(self.calls, [])

    def test_metrics_recorded_for_each_target(self):
        self._add("init-dirs")
        self._add("clean")

        summary = self.registry.execute(["init-dirs", "clean"])

        self.assertEqual(set(summary.durations), {"init-dirs", "clean"})
        self.assertGreaterEqual(summary.total_duration_seconds, 0.0)
        self.assertEqual(
            self.metrics.get_summary()["targets"],
            {"init-dirs": {"success": 1}, "clean": {"success": 1}},
        )


if __name__ == "__main__":
    unittest.main()
