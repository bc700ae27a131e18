"""
Unit Tests for the docker and docker-compose clients
"""

import unittest
from unittest.mock import Mock

from basemap_orchestrator.containers.compose import TOOLS_SERVICE, ComposeClient
from basemap_orchestrator.containers.docker_cli import DockerClient
from basemap_orchestrator.utils.config import DockerConfig


def docker_config(**kwargs):
    values = dict(project_name="openmaptiles", explicit_project=False, dc_opts=["--rm", "-u", "1000:1000"])
    values.update(kwargs)
    return DockerConfig(**values)


class TestComposeClient(unittest.TestCase):
    """Test suite for ComposeClient."""

    def setUp(self):
        self.runner = Mock()

    def test_run_carries_dc_opts(self):
        client = ComposeClient(docker_config(), self.runner)

        client.tools("generate-sql", "openmaptiles.yaml")

        args = self.runner.run.call_args[0][0]
        self.assertEqual(
            args,
            ["docker-compose", "run", "--rm", "-u", "1000:1000", TOOLS_SERVICE, "generate-sql", "openmaptiles.yaml"],
        )

    def test_project_flag_only_when_explicit(self):
        client = ComposeClient(docker_config(project_name="omt", explicit_project=True), self.runner)

        client.stop("postgres")
        client.run(TOOLS_SERVICE, "build", with_project=False)

        first, second = [call[0][0] for call in self.runner.run.call_args_list]
        self.assertEqual(first, ["docker-compose", "--project-name", "omt", "stop", "postgres"])
        self.assertNotIn("--project-name", second)

    def test_extra_compose_files(self):
        client = ComposeClient(docker_config(), self.runner)

        self.assertEqual(
            client.base_args(files=["docker-compose.yml", "./data/docker-compose-config.yml"]),
            ["docker-compose", "-f", "docker-compose.yml", "-f", "./data/docker-compose-config.yml"],
        )

    def test_tools_shell(self):
        client = ComposeClient(docker_config(dc_opts=[]), self.runner)

        client.tools_shell("pgwait && import-sql", warning_marker=": WARNING:")

        args, kwargs = self.runner.run.call_args
        self.assertEqual(args[0], ["docker-compose", "run", TOOLS_SERVICE, "sh", "-c", "pgwait && import-sql"])
        self.assertEqual(kwargs["warning_marker"], ": WARNING:")

    def test_up_flags(self):
        client = ComposeClient(docker_config(), self.runner)

        client.up("postgres", no_recreate=True)
        client.up("postserve")

        first, second = [call[0][0] for call in self.runner.run.call_args_list]
        self.assertEqual(first, ["docker-compose", "up", "--no-recreate", "-d", "postgres"])
        self.assertEqual(second, ["docker-compose", "up", "-d", "postserve"])

    def test_down_and_rm(self):
        client = ComposeClient(docker_config(), self.runner)

        client.down(volumes=True, remove_orphans=True)
        client.rm()

        first, second = [call[0][0] for call in self.runner.run.call_args_list]
        self.assertEqual(first, ["docker-compose", "down", "-v", "--remove-orphans"])
        self.assertEqual(second, ["docker-compose", "rm", "-fv"])

    def test_pull_never_passes_project(self):
        client = ComposeClient(docker_config(project_name="omt", explicit_project=True), self.runner)

        client.pull(["postgres"], quiet=True)

        self.assertEqual(
            self.runner.run.call_args[0][0],
            ["docker-compose", "pull", "--ignore-pull-failures", "--quiet", "postgres"],
        )


class TestDockerClient(unittest.TestCase):
    """Test suite for DockerClient."""

    def setUp(self):
        self.runner = Mock()
        self.client = DockerClient(docker_config(dc_opts=["--rm"]), self.runner)

    def test_run_container(self):
        self.client.run_container(
            "maptiler/tileserver-gl", "--port", "8080",
            name="tileserver-gl", interactive=True,
            volumes=[("/srv/data", "/data")], ports=[(8080, 8080)],
        )

        self.assertEqual(
            self.runner.run.call_args[0][0],
            [
                "docker", "run", "--rm", "-it", "--name", "tileserver-gl",
                "-v", "/srv/data:/data", "-p", "8080:8080",
                "maptiler/tileserver-gl", "--port", "8080",
            ],
        )

    def test_image_ids(self):
        self.runner.capture.return_value = "abc\ndef\n"

        self.assertEqual(self.client.image_ids("openmaptiles/*"), ["abc", "def"])
        self.runner.capture.assert_called_once_with(["docker", "images", "openmaptiles/*", "-q"])

    def test_remove_images_uses_run_for_each(self):
        self.client.remove_images(["abc"], force=False)

        self.runner.run_for_each.assert_called_once_with(["docker", "rmi"], ["abc"], echo=False)

    def test_list_images_skips_header(self):
        self.runner.capture.return_value = (
            "REPOSITORY   TAG    IMAGE ID   CREATED   SIZE\n"
            "<none>       <none> 0123abcd   2 days    1GB\n"
            "\n"
        )

        rows = self.client.list_images()

        self.assertEqual(rows, [["<none>", "<none>", "0123abcd", "2", "days", "1GB"]])

    def test_volume_names(self):
        self.runner.capture.return_value = "omt_pgdata\n"

        self.assertEqual(self.client.volume_names("^omt_"), ["omt_pgdata"])
        self.runner.capture.assert_called_once_with(["docker", "volume", "ls", "-q", "-f", "name=^omt_"])

    def test_remove_container(self):
        self.client.remove_container("maputnik_editor")

        self.runner.run.assert_called_once_with(["docker", "rm", "-f", "maputnik_editor"], check=True)


if __name__ == "__main__":
    unittest.main()
