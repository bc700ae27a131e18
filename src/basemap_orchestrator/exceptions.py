"""
Orchestrator Exceptions

Every failure that stops a pipeline run derives from ``OrchestratorError``.
Each class carries the process exit code the CLI should return, so callers
deeper in the stack only raise and never call ``sys.exit`` themselves.
"""

from typing import List, Optional, Sequence


class OrchestratorError(Exception):
    """Base class for pipeline failures."""

    exit_code = 1

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class MissingParameterError(OrchestratorError):
    """A required parameter (for example ``area``) was not supplied."""

    exit_code = 2

    def __init__(self, parameter: str, usage: Sequence[str]):
        super().__init__(f"Missing required parameter: {parameter}")
        self.parameter = parameter
        self.usage: List[str] = list(usage)


class UnknownTargetError(OrchestratorError):
    """A requested target is not registered."""

    exit_code = 2

    def __init__(self, name: str):
        super().__init__(f"No rule to make target '{name}'")
        self.name = name


class DependencyCycleError(OrchestratorError):
    """Target prerequisites form a cycle."""

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__("Circular dependency: " + " -> ".join(self.chain))


class CommandFailedError(OrchestratorError):
    """An external process exited with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int):
        self.args_list = list(args)
        self.returncode = returncode
        super().__init__(
            f"Command '{' '.join(self.args_list)}' failed with exit status {returncode}",
            exit_code=returncode if returncode > 0 else 1,
        )


class WarningDetectedError(OrchestratorError):
    """An external process printed a warning marker on its output."""

    def __init__(self, args: Sequence[str], line: str):
        self.args_list = list(args)
        self.line = line
        super().__init__(f"Warning detected in output of '{' '.join(self.args_list)}': {line}")


class ExecutableNotFoundError(OrchestratorError):
    """The program to run (docker, docker-compose, ...) is not installed."""

    exit_code = 127

    def __init__(self, program: str):
        super().__init__(f"Executable not found: {program}")
        self.program = program
