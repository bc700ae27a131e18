"""
Basemap Pipeline

The operator-facing command surface of the vector tile build. Each public
operation is registered as a target with its prerequisites:

- build: generate the tm2source, imposm3 mapping and tileset SQL
- database: start / stop / destroy PostGIS, psql console and maintenance
- import: OSM extracts, updates, diffs, borders, Natural Earth data,
  Wikidata and the generated SQL
- tiles: render MBTiles and refresh their metadata
- preview: tileserver-gl, postserve and the Maputnik editor
- housekeeping: docker image refresh / removal and cleanup

The substantive work happens inside the openmaptiles images; this module
decides which container runs, with which arguments and in which order.
"""

import shlex
import shutil
import sys
from pathlib import Path
from typing import IO, Dict, List, Optional, Sequence

import structlog

from ..containers.compose import TOOLS_SERVICE, ComposeClient
from ..containers.docker_cli import DockerClient
from ..containers.process_runner import CommandRunner
from ..exceptions import MissingParameterError, OrchestratorError
from ..monitoring.metrics import MetricsCollector
from ..utils.config import PRELOADED_POSTGIS_IMAGE, TILESET_DEFINITION, Config
from .targets import RunSummary, Target, TargetRegistry


CLI_NAME = "basemap-orchestrator"

OSM_SERVERS = ("geofabrik", "osmfr", "bbbike")
IMPORT_SQL_WARNING_MARKER = ": WARNING:"

TILESERVER_IMAGE = "maptiler/tileserver-gl"
MAPUTNIK_IMAGE = "maputnik/editor"
TILESERVER_CONTAINER = "tileserver-gl"
MAPUTNIK_CONTAINER = "maputnik_editor"
REMOVABLE_IMAGE_REFERENCES = ("openmaptiles/*", MAPUTNIK_IMAGE, TILESERVER_IMAGE)

PSQL_BASE = ["psql.sh", "-v", "ON_ERROR_STOP=1"]
PSQL_CSV = PSQL_BASE + ["-A", "-F,", "-P", "pager=off", "-P", "footer=off"]
PSQL_PLAIN = PSQL_BASE + ["-P", "pager=off"]

LIST_VIEWS_SQL = "select schemaname, viewname from pg_views where schemaname='public' order by viewname;"
LIST_TABLES_SQL = "select schemaname, tablename from pg_tables where schemaname='public' order by tablename;"

BANNER_RULE = "*" * 59


class BasemapPipeline:
    """
    Registers and runs every target of the vector tile build.

    Args:
        config: Orchestrator configuration
        runner: Command runner shared by all docker calls
        metrics: Optional metrics collector for target timings
        out: Stream for banners and usage messages (defaults to stdout)
    """

    def __init__(
        self,
        config: Config,
        runner: CommandRunner,
        metrics: Optional[MetricsCollector] = None,
        out: Optional[IO[str]] = None,
    ):
        self.config = config
        self.paths = config.paths
        self.options = config.options
        self.runner = runner
        self.compose = ComposeClient(config.docker, runner)
        self.docker = DockerClient(config.docker, runner)
        self.out = out or sys.stdout
        self.registry = TargetRegistry(metrics)
        self.logger = structlog.get_logger(
            component="BasemapPipeline",
            project=config.docker.project_name,
        )
        self._register_targets()

    def run(self, targets: Sequence[str]) -> RunSummary:
        """Run the named targets and their prerequisites."""
        return self.registry.execute(targets)

    # ------------------------------------------------------------------
    # registration

    def _register_targets(self) -> None:
        add = self.registry.add
        omt_host = self.config.docker.omt_host

        add(Target("help", self.help, description="help about available commands"))
        add(Target("init-dirs", self.init_dirs, description="create build, data and cache directories"))

        add(Target("build-tm2source", self.build_tm2source, ["init-dirs"],
                   description="generate build/openmaptiles.tm2source/data.yml"))
        add(Target("build-mapping", self.build_mapping, ["init-dirs"],
                   description="generate build/mapping.yaml"))
        add(Target("build-sql", self.build_sql, ["init-dirs"],
                   description="generate build/tileset.sql"))
        add(Target("all", None, ["build-tm2source", "build-mapping", "build-sql"],
                   description="build source code"))
        add(Target("clean", self.clean, description="remove the build directory"))

        add(Target("destroy-db", self.destroy_db,
                   description="remove docker containers and PostgreSQL data volume"))
        add(Target("start-db-nowait", self.start_db_nowait,
                   description="start PostgreSQL without waiting for it"))
        add(Target("start-db", self.wait_for_db, ["start-db-nowait"],
                   description="start PostgreSQL, creating it if it doesn't exist"))
        add(Target("start-db-preloaded", self.start_db_preloaded,
                   description="start PostgreSQL, creating data-prepopulated one if it doesn't exist"))
        add(Target("stop-db", self.stop_db,
                   description="stop PostgreSQL database without destroying the data"))

        add(Target("list-geofabrik", self.list_geofabrik,
                   description="list actual geofabrik OSM extracts for download"))
        for server in OSM_SERVERS:
            add(Target(f"download-{server}", self._download_action(server), ["init-dirs"],
                       description=f"download OSM data from {server} and create config file (area=<area-id>)"))

        add(Target("psql", self.psql, ["start-db-nowait"], description="start PostgreSQL console"))
        add(Target("import-osm", self.import_osm, ["all", "start-db-nowait"],
                   description="import PBF_FILE (or the downloaded extract) with imposm3"))
        add(Target("update-osm", self.update_osm, ["all", "start-db-nowait"],
                   description="keep the database updated from OSM replication"))
        add(Target("import-diff", self.import_diff, ["all", "start-db-nowait"],
                   description="apply OSM change files"))
        add(Target("import-data", self.import_data, ["start-db"],
                   description="import Natural Earth, water and lake data"))
        add(Target("import-borders", self.import_borders, ["start-db-nowait"],
                   description="import administrative borders"))
        add(Target("import-sql", self.import_sql, ["all", "start-db-nowait"],
                   description="run the generated SQL, aborting on warnings"))
        add(Target("import-wikidata", self.import_wikidata, description="import Wikidata labels"))

        add(Target("generate-tiles", self.generate_tiles, ["init-dirs", "all", "start-db"],
                   description="render data/tiles.mbtiles"))

        add(Target("start-tileserver", self.start_tileserver, ["init-dirs"],
                   description=f"start maptiler/tileserver-gl [ see {omt_host}:8080 ]"))
        add(Target("start-postserve", self.start_postserve, ["start-db"],
                   description=f"start dynamic tile server [ see {omt_host}:8090 ]"))
        add(Target("stop-postserve", self.stop_postserve, description="stop dynamic tile server"))
        add(Target("start-maputnik", self.start_maputnik, ["stop-maputnik", "start-postserve"],
                   description=f"start Maputnik Editor + dynamic tile server [ see {omt_host}:8088 ]"))
        add(Target("stop-maputnik", self.stop_maputnik, ignore_errors=True,
                   description="stop Maputnik Editor"))

        add(Target("generate-qareports", self.generate_qareports, ["start-db"],
                   description="generate reports [./build/qareports]"))
        add(Target("generate-devdoc", self.generate_devdoc, ["init-dirs"],
                   description="generate devdoc including graphs for all layers [./layers/...]"))
        add(Target("bash", self.bash, description="start openmaptiles-tools /bin/bash terminal"))

        add(Target("reset-db-stats", self.reset_db_stats, description="reset pg_stat_statements"))
        add(Target("list-views", self.list_views, description="list PostgreSQL public schema views"))
        add(Target("list-tables", self.list_tables, description="list PostgreSQL public schema tables"))
        add(Target("psql-list-tables", self.psql_list_tables, description="list all PostgreSQL tables"))
        add(Target("vacuum-db", self.vacuum_db, description="PostgreSQL: VACUUM ANALYZE"))
        add(Target("analyze-db", self.analyze_db, description="PostgreSQL: ANALYZE"))

        add(Target("list-docker-images", self.list_docker_images, description="list openmaptiles docker images"))
        add(Target("refresh-docker-images", self.refresh_docker_images,
                   description="refresh openmaptiles docker images from Docker HUB"))
        add(Target("remove-docker-images", self.remove_docker_images,
                   description="remove openmaptiles docker images"))
        add(Target("clean-unnecessary-docker", self.clean_unnecessary_docker,
                   description="clean unnecessary docker image(s) and container(s)"))

        add(Target("test-perf-null", self.test_perf_null, description="run the null performance test"))
        add(Target("build-test-pbf", self.build_test_pbf, description="build the test PBF extract"))

        add(Target("quickstart", None, self.quickstart_steps(), precheck=self._require_quickstart_area,
                   description="download an area and run the whole pipeline (area=<area-id>)"))

    # ------------------------------------------------------------------
    # helpers

    def _echo(self, *lines: str) -> None:
        for line in lines:
            self.out.write(line + "\n")
        self.out.flush()

    def _banner(self, *lines: str) -> None:
        self._echo(" ", BANNER_RULE, "* ", *lines, "* ", BANNER_RULE, " ")

    def _mkdir(self, path: Path) -> None:
        if self.runner.dry_run:
            self._echo(f"mkdir -p {path}")
            return
        path.mkdir(parents=True, exist_ok=True)

    def _remove_tree(self, path: Path) -> None:
        self._echo(f"rm -rf {path}")
        if not self.runner.dry_run:
            shutil.rmtree(path, ignore_errors=True)

    def _remove_file(self, path: Path) -> None:
        self._echo(f"rm -f {path}")
        if not self.runner.dry_run:
            path.unlink(missing_ok=True)

    def _psql(self, *args: str) -> None:
        self.compose.tools(*args)

    # ------------------------------------------------------------------
    # build

    def help(self) -> None:
        host = self.config.docker.omt_host
        cmd = CLI_NAME
        self._echo(
            "=" * 78,
            " Basemap Orchestrator - OpenMapTiles vector tile pipeline",
            "Hints for testing areas",
            f"  {cmd} list-geofabrik                  # list actual geofabrik OSM extracts for download -> <<your-area>>",
            f"  {cmd} quickstart area=<<your-area>>   # example:  {cmd} quickstart area=madagascar",
            " ",
            "Hints for designers:",
            f"  {cmd} start-maputnik                  # start Maputnik Editor + dynamic tile server [ see {host}:8088 ]",
            f"  {cmd} start-postserve                 # start dynamic tile server                   [ see {host}:8090 ]",
            f"  {cmd} start-tileserver                # start maptiler/tileserver-gl                [ see {host}:8080 ]",
            " ",
            "Hints for developers:",
        )
        for target in self.registry.targets():
            if target.name == "help":
                continue
            self._echo(f"  {cmd} {target.name:<26} # {target.description}")
        self._echo(
            f"  {cmd} help                       # help about available commands",
            "  cat  .env                                       # list PG database and MIN_ZOOM and MAX_ZOOM information",
            "=" * 78,
        )

    def init_dirs(self) -> None:
        for path in (self.paths.build_dir, self.paths.data_dir, self.paths.cache_dir):
            self._mkdir(path)

    def build_tm2source(self) -> None:
        self._mkdir(self.paths.tm2source_file.parent)
        self.compose.tools(
            "generate-tm2source", TILESET_DEFINITION,
            "--host=postgres", "--port=5432", "--database=openmaptiles",
            "--user=openmaptiles", "--password=openmaptiles",
            stdout_path=self.paths.tm2source_file,
        )

    def build_mapping(self) -> None:
        self.compose.tools("generate-imposm3", TILESET_DEFINITION, stdout_path=self.paths.mapping_file)

    def build_sql(self) -> None:
        self.compose.tools("generate-sql", TILESET_DEFINITION, stdout_path=self.paths.tileset_sql_file)

    def clean(self) -> None:
        self._remove_tree(self.paths.build_dir)

    # ------------------------------------------------------------------
    # database

    def destroy_db(self) -> None:
        # volumes are named after the lower-cased project
        project = self.config.docker.project_name.lower()
        self.compose.down(volumes=True, remove_orphans=True)
        self.compose.rm()
        self.docker.remove_volumes(self.docker.volume_names(f"^{project}_"))
        self._remove_tree(self.paths.cache_dir)

    def start_db_nowait(self, extra_env: Optional[Dict[str, str]] = None) -> None:
        env = {**self.runner.env, **(extra_env or {})}
        image = env.get("POSTGIS_IMAGE") or "default"
        self._echo(f"Starting postgres docker compose target using {image} image (no recreate if exists)")
        self.compose.up("postgres", no_recreate=True, extra_env=extra_env)

    def wait_for_db(self, extra_env: Optional[Dict[str, str]] = None) -> None:
        self._echo("Wait for PostgreSQL to start...")
        self.compose.tools("pgwait", extra_env=extra_env)

    def start_db_preloaded(self) -> None:
        preloaded = {"POSTGIS_IMAGE": PRELOADED_POSTGIS_IMAGE}
        self.start_db_nowait(extra_env=preloaded)
        self.wait_for_db(extra_env=preloaded)

    def stop_db(self) -> None:
        self._echo("Stopping PostgreSQL...")
        self.compose.stop("postgres")

    def psql(self) -> None:
        self.compose.tools_shell("pgwait && psql.sh")

    def reset_db_stats(self) -> None:
        self._psql(*PSQL_PLAIN, "-c", "SELECT pg_stat_statements_reset();")

    def list_views(self) -> None:
        self._psql(*PSQL_CSV, "-c", LIST_VIEWS_SQL)

    def list_tables(self) -> None:
        self._psql(*PSQL_CSV, "-c", LIST_TABLES_SQL)

    def psql_list_tables(self) -> None:
        self._psql(*PSQL_PLAIN, "-c", "\\d+")

    def vacuum_db(self) -> None:
        self._echo("Start - postgresql: VACUUM ANALYZE VERBOSE;")
        self._psql(*PSQL_PLAIN, "-c", "VACUUM ANALYZE VERBOSE;")

    def analyze_db(self) -> None:
        self._echo("Start - postgresql: ANALYZE VERBOSE;")
        self._psql(*PSQL_PLAIN, "-c", "ANALYZE VERBOSE;")

    # ------------------------------------------------------------------
    # downloads and imports

    def list_geofabrik(self) -> None:
        self.compose.tools("download-osm", "list", "geofabrik")

    def _download_action(self, server: str):
        def action() -> None:
            self.download_area(server)
        action.__name__ = f"download_{server}"
        return action

    def download_usage(self, server: str) -> List[str]:
        usage = [
            "",
            "ERROR: Unable to download an area if area is not given.",
            "Usage:",
            f"  {CLI_NAME} download-{server} area=<area-id>",
            "",
        ]
        if server == "geofabrik":
            usage += [f"Use   {CLI_NAME} list-geofabrik   to get a list of all available areas", ""]
        return usage

    def download_area(self, server: str) -> None:
        """
        Download an OSM extract for ``area`` and write the compose override.

        Args:
            server: One of geofabrik, osmfr, bbbike

        Raises:
            MissingParameterError: ``area`` is empty
        """
        area = self.options.area
        if not area:
            usage = self.download_usage(server)
            self._echo(*usage)
            raise MissingParameterError("area", usage)

        self._echo(f"=============== download-{server} =======================", f"Download area: {area}")
        # zoom variables are expanded inside the container from the compose .env
        script = (
            f"download-osm {server} {shlex.quote(area)}"
            " --minzoom $QUICKSTART_MIN_ZOOM"
            " --maxzoom $QUICKSTART_MAX_ZOOM"
            " --make-dc /import/docker-compose-config.yml -- -d /import"
        )
        self.compose.tools_shell(script, shell="bash")
        self._list_downloads(area)
        self._echo("")

    def _list_downloads(self, area: str) -> None:
        prefix = area.rsplit("/", 1)[-1]
        pattern = f"./data/{prefix}*"
        if self.runner.dry_run:
            self._echo(f"ls -la {pattern}")
            return
        matches = sorted(self.paths.data_dir.glob(f"{prefix}*"))
        if not matches:
            raise OrchestratorError(f"No downloaded files match {pattern}")
        self.runner.run(["ls", "-la"] + [str(path) for path in matches])

    def import_osm(self) -> None:
        pbf = self.options.pbf_file
        command = "pgwait && import-osm"
        if pbf:
            command += f" {shlex.quote(pbf)}"
        self.compose.tools_shell(command)

    def update_osm(self) -> None:
        self.compose.tools_shell("pgwait && import-update")

    def import_diff(self) -> None:
        self.compose.tools_shell("pgwait && import-diff")

    def import_data(self) -> None:
        self.compose.run("import-data")

    def import_borders(self) -> None:
        self.compose.tools_shell("pgwait && import-borders")

    def import_sql(self) -> None:
        self.compose.tools_shell("pgwait && import-sql", warning_marker=IMPORT_SQL_WARNING_MARKER)

    def import_wikidata(self) -> None:
        # destroy-db may have removed the cache earlier in this run
        self._mkdir(self.paths.cache_dir)
        self.compose.tools("import-wikidata", "--cache", "/cache/wikidata-cache.json", TILESET_DEFINITION)

    # ------------------------------------------------------------------
    # tiles

    def tile_compose_files(self) -> List[str]:
        """Compose files for tile generation; adds the download override when present."""
        if self.paths.extra_compose_file.exists():
            return ["docker-compose.yml", "./data/docker-compose-config.yml"]
        return []

    def generate_tiles(self) -> None:
        self._remove_file(self.paths.mbtiles_file)
        self._echo("Generating tiles ...")
        self.compose.run("generate-vectortiles", files=self.tile_compose_files())
        self._echo("Updating generated tile metadata ...")
        self.compose.tools("generate-metadata", "./data/tiles.mbtiles")

    # ------------------------------------------------------------------
    # preview servers

    def start_tileserver(self) -> None:
        host = self.config.docker.omt_host
        self._banner(
            f"* Download/refresh {TILESERVER_IMAGE} docker image",
            "* see documentation: https://github.com/maptiler/tileserver-gl",
        )
        self.docker.pull(TILESERVER_IMAGE)
        self._banner(
            f"* Start {TILESERVER_IMAGE} ",
            f"*       ----------------------------> check {host}:8080 ",
        )
        self.docker.run_container(
            TILESERVER_IMAGE, "--port", "8080",
            name=TILESERVER_CONTAINER,
            interactive=True,
            volumes=[(str(self.paths.data_dir), "/data")],
            ports=[(8080, 8080)],
        )

    def start_postserve(self) -> None:
        host = self.config.docker.omt_host
        self._banner(
            f"* Bring up postserve at {host}:8090",
            f"*     --> can view it locally (use {CLI_NAME} start-maputnik)",
            "*     --> or can use https://maputnik.github.io/editor",
            "* ",
            f"*  set data source / TileJSON URL to {host}:8090",
        )
        self.compose.up("postserve")

    def stop_postserve(self) -> None:
        self.compose.stop("postserve")

    def start_maputnik(self) -> None:
        host = self.config.docker.omt_host
        self._banner(
            f"* Start {MAPUTNIK_IMAGE} ",
            f"*       ---> go to {host}:8088 ",
            f"*       ---> set data source / TileJSON URL to {host}:8090",
        )
        self.docker.run_container(MAPUTNIK_IMAGE, name=MAPUTNIK_CONTAINER, detach=True, ports=[(8088, 8888)])

    def stop_maputnik(self) -> None:
        self.docker.remove_container(MAPUTNIK_CONTAINER, force=True)

    # ------------------------------------------------------------------
    # development tools

    def generate_qareports(self) -> None:
        self.runner.run(["./qa/run.sh"])

    def generate_devdoc(self) -> None:
        self._mkdir(self.paths.devdoc_dir)
        params = " ".join(self.config.graph_params)
        self.compose.tools_shell(
            f"generate-etlgraph {TILESET_DEFINITION} {params} && "
            f"generate-mapping-graph {TILESET_DEFINITION} {params}"
        )

    def bash(self) -> None:
        self.compose.tools("bash")

    def test_perf_null(self) -> None:
        self.compose.tools("test-perf", TILESET_DEFINITION, "--test", "null", "--no-color")

    def build_test_pbf(self) -> None:
        self.compose.run(TOOLS_SERVICE, "/tileset/.github/workflows/build-test-data.sh", with_project=False)

    # ------------------------------------------------------------------
    # docker housekeeping

    def list_docker_images(self) -> None:
        rows = [line for line in self.docker.image_table().splitlines() if "openmaptiles" in line]
        if not rows:
            self.logger.info("No openmaptiles docker images found")
        self._echo(*rows)

    def refresh_docker_images(self) -> None:
        if self.options.no_refresh:
            self._echo("Skipping docker image refresh")
            return

        self._echo("", "Refreshing docker images... Use NO_REFRESH=1 to skip.")
        services = [TOOLS_SERVICE, "generate-vectortiles", "postgres"]
        if self.options.use_preloaded_image:
            self.compose.pull(
                services,
                quiet=self.options.quiet,
                extra_env={"POSTGIS_IMAGE": PRELOADED_POSTGIS_IMAGE},
            )
        else:
            self.compose.pull(services + ["import-data"], quiet=self.options.quiet)

    def remove_docker_images(self) -> None:
        self._echo("Deleting all openmaptiles related docker image(s)...")
        self.compose.down(echo=False)
        for reference in REMOVABLE_IMAGE_REFERENCES:
            self.docker.remove_images(self.docker.image_ids(reference), force=True)

    def clean_unnecessary_docker(self) -> None:
        self._echo("Deleting unnecessary container(s)...")
        self.docker.remove_containers(self.docker.exited_container_ids())
        self._echo("Deleting unnecessary image(s)...")
        dangling = [row[2] for row in self.docker.list_images() if "<none>" in row and len(row) > 2]
        self.docker.remove_images(dangling, force=False)

    # ------------------------------------------------------------------
    # quickstart

    def quickstart_steps(self) -> List[str]:
        """Targets run by ``quickstart``, in order."""
        steps = ["refresh-docker-images", "all", "destroy-db"]
        if self.options.use_preloaded_image:
            steps.append("start-db-preloaded")
        else:
            steps += ["start-db", "import-data"]
        steps += [
            "download-geofabrik",
            "import-osm",
            "import-borders",
            "import-wikidata",
            "import-sql",
            "analyze-db",
            "generate-tiles",
            "stop-db",
        ]
        return steps

    def _require_quickstart_area(self) -> None:
        if self.options.area:
            return
        usage = [
            "",
            "ERROR: quickstart needs an area to download.",
            "Usage:",
            f"  {CLI_NAME} quickstart area=<area-id>",
            "",
            f"Use   {CLI_NAME} list-geofabrik   to get a list of all available areas",
            "",
        ]
        self._echo(*usage)
        raise MissingParameterError("area", usage)
