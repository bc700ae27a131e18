"""
Configuration

Builds the ``Config`` object shared by every component. Values come from the
process environment, and ``NAME=value`` assignments given on the command line
override them (the same precedence ``make`` gives command-line variables).

Sections:
- ``docker``: docker-compose project, run options, preview host
- ``paths``: working tree layout (build, data, cache directories)
- ``options``: pipeline switches (area, PBF file, preloaded image, quiet, ...)
- ``logging`` / ``metrics``: ambient settings
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional


PRELOADED_POSTGIS_IMAGE = "openmaptiles/postgis-preloaded"
TILESET_DEFINITION = "openmaptiles.yaml"


def _stripped(values: Mapping[str, str], name: str) -> str:
    return (values.get(name) or "").strip()


def default_dc_opts() -> List[str]:
    """Remove containers on exit and run them as the invoking user."""
    opts = ["--rm"]
    if hasattr(os, "getuid"):
        opts += ["-u", f"{os.getuid()}:{os.getgid()}"]
    return opts


def parse_omt_host(docker_host: Optional[str]) -> str:
    """
    Derive the host used in preview URLs from ``DOCKER_HOST``.

    ``tcp://10.0.0.5:2376`` becomes ``http://10.0.0.5``; an unset or empty
    value falls back to ``http://localhost``.
    """
    host = (docker_host or "").replace("tcp://", "")
    parts = [part for part in host.replace(":", " ").split() if part]
    return f"http://{parts[0] if parts else 'localhost'}"


@dataclass
class DockerConfig:
    """docker / docker-compose invocation settings."""
    project_name: str
    explicit_project: bool = False
    dc_opts: List[str] = field(default_factory=default_dc_opts)
    docker_host: Optional[str] = None
    compose_command: List[str] = field(default_factory=lambda: ["docker-compose"])
    docker_command: List[str] = field(default_factory=lambda: ["docker"])

    @property
    def omt_host(self) -> str:
        return parse_omt_host(self.docker_host)


@dataclass
class PathsConfig:
    """Working tree layout, relative to the project root."""
    root: Path

    @property
    def build_dir(self) -> Path:
        return self.root / "build"

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def cache_dir(self) -> Path:
        return self.root / "cache"

    @property
    def devdoc_dir(self) -> Path:
        return self.build_dir / "devdoc"

    @property
    def tm2source_file(self) -> Path:
        return self.build_dir / "openmaptiles.tm2source" / "data.yml"

    @property
    def mapping_file(self) -> Path:
        return self.build_dir / "mapping.yaml"

    @property
    def tileset_sql_file(self) -> Path:
        return self.build_dir / "tileset.sql"

    @property
    def mbtiles_file(self) -> Path:
        return self.data_dir / "tiles.mbtiles"

    @property
    def extra_compose_file(self) -> Path:
        return self.data_dir / "docker-compose-config.yml"


@dataclass
class PipelineOptions:
    """Switches that change which commands run and with which flags."""
    area: str = ""
    pbf_file: str = ""
    use_preloaded_image: bool = False
    quiet: bool = False
    test_mode: bool = False
    no_refresh: bool = False


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "console"


@dataclass
class MetricsConfig:
    pushgateway: Optional[str] = None
    job_name: str = "basemap_orchestrator"


@dataclass
class Config:
    """
    Complete orchestrator configuration.

    Attributes:
        docker: docker / docker-compose settings
        paths: project directory layout
        options: pipeline switches
        logging: log level and renderer
        metrics: Prometheus push settings
        environment: variables passed to every child process
    """
    docker: DockerConfig
    paths: PathsConfig
    options: PipelineOptions = field(default_factory=PipelineOptions)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    environment: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, str]] = None,
        root: Optional[Path] = None,
    ) -> "Config":
        """
        Build a configuration from environment variables.

        Args:
            environ: Base environment (defaults to ``os.environ``)
            overrides: ``NAME=value`` assignments from the command line
            root: Project root (defaults to the current directory)

        Returns:
            Populated Config instance
        """
        base = dict(os.environ if environ is None else environ)
        values = {**base, **dict(overrides or {})}
        root = Path(root or Path.cwd()).resolve()

        project = _stripped(values, "DC_PROJECT")
        dc_opts_raw = values.get("DC_OPTS")

        docker = DockerConfig(
            project_name=project or root.name,
            explicit_project=bool(project),
            dc_opts=shlex.split(dc_opts_raw) if dc_opts_raw is not None else default_dc_opts(),
            docker_host=values.get("DOCKER_HOST"),
        )

        options = PipelineOptions(
            area=_stripped(values, "area"),
            pbf_file=_stripped(values, "PBF_FILE"),
            use_preloaded_image=bool(_stripped(values, "USE_PRELOADED_IMAGE")),
            quiet=bool(_stripped(values, "QUIET")),
            test_mode=values.get("TEST_MODE", "no") == "yes",
            no_refresh=bool(_stripped(values, "NO_REFRESH")),
        )

        logging_config = LoggingConfig(
            level=(values.get("BASEMAP_LOG_LEVEL") or "INFO").upper(),
            format=values.get("BASEMAP_LOG_FORMAT") or "console",
        )

        metrics = MetricsConfig(pushgateway=_stripped(values, "PROMETHEUS_PUSHGATEWAY") or None)

        return cls(
            docker=docker,
            paths=PathsConfig(root=root),
            options=options,
            logging=logging_config,
            metrics=metrics,
            environment=values,
        )

    @property
    def graph_params(self) -> List[str]:
        """Output arguments of the devdoc graph generators."""
        if self.options.test_mode:
            # create images in ./build/devdoc and compare them to ./layers
            return ["./build/devdoc", "./layers"]
        return ["./layers"]
