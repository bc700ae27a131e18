"""
docker-compose client.

Assembles docker-compose command lines the same way for every target: the
project flag only when a project name was given explicitly, optional extra
``-f`` files, then the subcommand. ``run`` always carries the configured
``DC_OPTS`` so containers are removed on exit and run as the calling user.
"""

from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from ..utils.config import DockerConfig
from .process_runner import CommandResult, CommandRunner


TOOLS_SERVICE = "openmaptiles-tools"


class ComposeClient:
    """Thin wrapper over the docker-compose CLI."""

    def __init__(self, docker_config: DockerConfig, runner: CommandRunner):
        self.config = docker_config
        self.runner = runner

    def base_args(self, files: Optional[Sequence[str]] = None, with_project: bool = True) -> List[str]:
        args = list(self.config.compose_command)
        if with_project and self.config.explicit_project:
            args += ["--project-name", self.config.project_name]
        for compose_file in files or ():
            args += ["-f", str(compose_file)]
        return args

    def run(
        self,
        service: str,
        *command: str,
        files: Optional[Sequence[str]] = None,
        with_project: bool = True,
        stdout_path: Optional[Path] = None,
        warning_marker: Optional[str] = None,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        """``docker-compose run <DC_OPTS> <service> <command...>``"""
        args = self.base_args(files, with_project) + ["run"] + list(self.config.dc_opts) + [service]
        args += list(command)
        return self.runner.run(
            args,
            stdout_path=stdout_path,
            warning_marker=warning_marker,
            extra_env=extra_env,
        )

    def tools(self, *command: str, **kwargs) -> CommandResult:
        """Run a command in the openmaptiles-tools container."""
        return self.run(TOOLS_SERVICE, *command, **kwargs)

    def tools_shell(self, script: str, shell: str = "sh", **kwargs) -> CommandResult:
        """Run a shell snippet in the openmaptiles-tools container."""
        return self.run(TOOLS_SERVICE, shell, "-c", script, **kwargs)

    def up(
        self,
        *services: str,
        detach: bool = True,
        no_recreate: bool = False,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        args = self.base_args() + ["up"]
        if no_recreate:
            args.append("--no-recreate")
        if detach:
            args.append("-d")
        return self.runner.run(args + list(services), extra_env=extra_env)

    def stop(self, *services: str) -> CommandResult:
        return self.runner.run(self.base_args() + ["stop"] + list(services))

    def down(self, volumes: bool = False, remove_orphans: bool = False, echo: bool = True) -> CommandResult:
        args = self.base_args() + ["down"]
        if volumes:
            args.append("-v")
        if remove_orphans:
            args.append("--remove-orphans")
        return self.runner.run(args, echo=echo)

    def rm(self) -> CommandResult:
        """Remove stopped service containers and their anonymous volumes."""
        return self.runner.run(self.base_args() + ["rm", "-fv"])

    def pull(
        self,
        services: Sequence[str],
        quiet: bool = False,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        """Pull service images, tolerating images that cannot be pulled."""
        args = self.base_args(with_project=False) + ["pull", "--ignore-pull-failures"]
        if quiet:
            args.append("--quiet")
        return self.runner.run(args + list(services), extra_env=extra_env)
