"""
docker client.

Plain ``docker`` calls used outside of docker-compose: the stand-alone
preview containers (tileserver-gl, maputnik) and image / volume housekeeping.
Listing commands return parsed values so callers can feed them to a removal
command only when there is something to remove.
"""

from typing import List, Optional, Sequence, Tuple

from ..utils.config import DockerConfig
from .process_runner import CommandResult, CommandRunner


class DockerClient:
    """Thin wrapper over the docker CLI."""

    def __init__(self, docker_config: DockerConfig, runner: CommandRunner):
        self.config = docker_config
        self.runner = runner

    def _docker(self, *args: str) -> List[str]:
        return list(self.config.docker_command) + list(args)

    def pull(self, image: str) -> CommandResult:
        return self.runner.run(self._docker("pull", image))

    def run_container(
        self,
        image: str,
        *command: str,
        name: Optional[str] = None,
        detach: bool = False,
        interactive: bool = False,
        volumes: Sequence[Tuple[str, str]] = (),
        ports: Sequence[Tuple[int, int]] = (),
    ) -> CommandResult:
        """``docker run <DC_OPTS> [flags] <image> <command...>``"""
        args = self._docker("run") + list(self.config.dc_opts)
        if interactive:
            args.append("-it")
        if name:
            args += ["--name", name]
        if detach:
            args.append("-d")
        for host_path, container_path in volumes:
            args += ["-v", f"{host_path}:{container_path}"]
        for host_port, container_port in ports:
            args += ["-p", f"{host_port}:{container_port}"]
        return self.runner.run(args + [image] + list(command))

    def remove_container(self, name: str, force: bool = True, check: bool = True) -> CommandResult:
        args = self._docker("rm")
        if force:
            args.append("-f")
        return self.runner.run(args + [name], check=check)

    def image_ids(self, reference: str) -> List[str]:
        """IDs of local images matching a reference such as ``openmaptiles/*``."""
        return self.runner.capture(self._docker("images", reference, "-q")).split()

    def remove_images(self, image_ids: Sequence[str], force: bool = True) -> Optional[CommandResult]:
        args = self._docker("rmi")
        if force:
            args.append("-f")
        return self.runner.run_for_each(args, image_ids, echo=False)

    def list_images(self) -> List[List[str]]:
        """Rows of ``docker images`` split on whitespace, header excluded."""
        lines = self.runner.capture(self._docker("images")).splitlines()
        return [line.split() for line in lines[1:] if line.strip()]

    def image_table(self) -> str:
        return self.runner.capture(self._docker("images"))

    def volume_names(self, name_filter: str) -> List[str]:
        output = self.runner.capture(self._docker("volume", "ls", "-q", "-f", f"name={name_filter}"))
        return output.split()

    def remove_volumes(self, names: Sequence[str]) -> Optional[CommandResult]:
        return self.runner.run_for_each(self._docker("volume", "rm"), names)

    def exited_container_ids(self) -> List[str]:
        output = self.runner.capture(self._docker("ps", "-a", "-q", "--filter", "status=exited"))
        return output.split()

    def remove_containers(self, container_ids: Sequence[str]) -> Optional[CommandResult]:
        return self.runner.run_for_each(self._docker("rm"), container_ids, echo=False)
