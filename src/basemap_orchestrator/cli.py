"""
Command-line entry point.

Usage:
    basemap-orchestrator [options] TARGET... [NAME=value ...]

Targets follow the OpenMapTiles make targets (``start-db``, ``import-osm``,
``generate-tiles``, ...). ``NAME=value`` tokens override environment
variables for this run, e.g. ``download-geofabrik area=albania``.
"""

import argparse
import re
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from . import __version__
from .containers.process_runner import CommandRunner
from .exceptions import OrchestratorError
from .monitoring.metrics import MetricsCollector
from .orchestration.pipeline import BasemapPipeline
from .utils.config import Config
from .utils.logging_config import configure_logging


ASSIGNMENT = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$", re.DOTALL)


def split_assignments(tokens: Sequence[str]) -> Tuple[List[str], Dict[str, str]]:
    """Separate target names from ``NAME=value`` variable assignments."""
    targets: List[str] = []
    overrides: Dict[str, str] = {}
    for token in tokens:
        match = ASSIGNMENT.match(token)
        if match:
            overrides[match.group(1)] = match.group(2)
        else:
            targets.append(token)
    return targets, overrides


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="basemap-orchestrator",
        description="Run the OpenMapTiles vector tile pipeline through docker-compose.",
    )
    parser.add_argument("targets", nargs="*", metavar="TARGET|NAME=value",
                        help="targets to run, and variable overrides")
    parser.add_argument("-C", "--directory", type=Path, default=None,
                        help="project directory containing docker-compose.yml")
    parser.add_argument("-n", "--dry-run", action="store_true",
                        help="print the commands that would run without running them")
    parser.add_argument("--list", action="store_true", help="list available targets and exit")
    parser.add_argument("--log-level", default=None, help="log level (default: BASEMAP_LOG_LEVEL or INFO)")
    parser.add_argument("--log-format", choices=["console", "json"], default=None,
                        help="log renderer (default: BASEMAP_LOG_FORMAT or console)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    targets, overrides = split_assignments(args.targets)

    config = Config.from_env(overrides=overrides, root=args.directory)
    configure_logging(
        args.log_level or config.logging.level,
        args.log_format or config.logging.format,
    )
    logger = structlog.get_logger(component="cli")

    metrics = MetricsCollector(config.metrics.pushgateway, config.metrics.job_name)
    runner = CommandRunner(
        env=config.environment,
        cwd=config.paths.root,
        dry_run=args.dry_run,
        metrics=metrics,
    )
    pipeline = BasemapPipeline(config, runner, metrics=metrics)

    if args.list:
        for target in pipeline.registry.targets():
            print(f"{target.name:<26} {target.description}")
        return 0

    try:
        summary = pipeline.run(targets or ["help"])
    except OrchestratorError as e:
        logger.error("Pipeline aborted", error=str(e), exit_code=e.exit_code)
        return e.exit_code
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    finally:
        metrics.push_to_prometheus_gateway()

    logger.info(
        "Pipeline finished",
        targets=summary.executed,
        duration_seconds=round(summary.total_duration_seconds, 3),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
