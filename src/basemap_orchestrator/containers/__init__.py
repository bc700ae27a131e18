"""
Containers Module

Everything that touches a child process: the synchronous command runner and
the docker / docker-compose command builders on top of it.
"""

from .compose import TOOLS_SERVICE, ComposeClient
from .docker_cli import DockerClient
from .process_runner import CommandResult, CommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "ComposeClient",
    "DockerClient",
    "TOOLS_SERVICE",
]
