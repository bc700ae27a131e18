"""
Process Runner

Synchronous execution of external commands. Every docker and docker-compose
call made by the orchestrator goes through ``CommandRunner`` so that:

- each command is logged with its arguments, exit status and duration
- a non-zero exit status raises ``CommandFailedError``
- stdout can be redirected into a file (generated build artifacts)
- stdout can be scanned for a warning marker that aborts the pipeline
- a dry run prints what would be executed without executing it
"""

import os
import shlex
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from ..exceptions import CommandFailedError, ExecutableNotFoundError, WarningDetectedError
from ..monitoring.metrics import MetricsCollector


WARNING_ABORT_MESSAGE = "\n*** WARNING detected, aborting"


@dataclass
class CommandResult:
    """Outcome of one external command."""
    args: List[str]
    returncode: int
    duration_seconds: float = 0.0
    output: Optional[str] = None
    warning_line: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.warning_line is None


class CommandRunner:
    """
    Runs external commands one at a time and blocks until each exits.

    Args:
        env: Environment for child processes (defaults to ``os.environ``)
        cwd: Working directory for child processes
        dry_run: Print commands instead of running them
        metrics: Optional metrics collector for command counts
        stdout: Stream used for echoed commands and scanned output
    """

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
        dry_run: bool = False,
        metrics: Optional[MetricsCollector] = None,
        stdout: Optional[IO[str]] = None,
    ):
        self.env = dict(os.environ if env is None else env)
        self.cwd = Path(cwd) if cwd is not None else None
        self.dry_run = dry_run
        self.metrics = metrics
        self.stdout = stdout or sys.stdout
        self.logger = structlog.get_logger(component="CommandRunner")
        self.history: List[CommandResult] = []

    def _child_env(self, extra_env: Optional[Mapping[str, str]]) -> Dict[str, str]:
        env = dict(self.env)
        if extra_env:
            env.update(extra_env)
        return env

    def _finish(self, result: CommandResult, check: bool) -> CommandResult:
        self.history.append(result)
        status = "success" if result.ok else "failed"
        if self.metrics is not None:
            self.metrics.record_command(os.path.basename(result.args[0]), status)

        self.logger.debug(
            "Command finished",
            command=shlex.join(result.args),
            returncode=result.returncode,
            duration_seconds=round(result.duration_seconds, 3),
        )

        if result.warning_line is not None:
            raise WarningDetectedError(result.args, result.warning_line)
        if check and result.returncode != 0:
            self.logger.error(
                "Command failed",
                command=shlex.join(result.args),
                returncode=result.returncode,
            )
            raise CommandFailedError(result.args, result.returncode)
        return result

    def _echo(self, args: Sequence[str], stdout_path: Optional[Path]) -> None:
        line = shlex.join(args)
        if stdout_path is not None:
            line += f" > {stdout_path}"
        self.stdout.write(line + "\n")
        self.stdout.flush()

    def run(
        self,
        args: Sequence[str],
        *,
        extra_env: Optional[Mapping[str, str]] = None,
        stdout_path: Optional[Path] = None,
        warning_marker: Optional[str] = None,
        check: bool = True,
        echo: bool = True,
    ) -> CommandResult:
        """
        Run a command and wait for it to exit.

        Args:
            args: Program and arguments
            extra_env: Variables added to the child environment
            stdout_path: Write the command's stdout into this file
            warning_marker: Abort when a stdout line contains this text
            check: Raise ``CommandFailedError`` on a non-zero exit status
            echo: Print the command line before running it

        Returns:
            CommandResult for the finished command
        """
        args = [str(arg) for arg in args]
        if echo or self.dry_run:
            self._echo(args, stdout_path)
        if self.dry_run:
            return CommandResult(args=args, returncode=0)

        self.logger.info("Running command", command=shlex.join(args))
        start = time.monotonic()
        try:
            if warning_marker is not None:
                result = self._run_scanned(args, extra_env, warning_marker)
            elif stdout_path is not None:
                Path(stdout_path).parent.mkdir(parents=True, exist_ok=True)
                with open(stdout_path, "w", encoding="utf-8") as handle:
                    completed = subprocess.run(
                        args, stdout=handle, env=self._child_env(extra_env), cwd=self.cwd
                    )
                result = CommandResult(args=args, returncode=completed.returncode)
            else:
                completed = subprocess.run(args, env=self._child_env(extra_env), cwd=self.cwd)
                result = CommandResult(args=args, returncode=completed.returncode)
        except FileNotFoundError:
            self.logger.error("Executable not found", program=args[0])
            raise ExecutableNotFoundError(args[0])

        result.duration_seconds = time.monotonic() - start
        return self._finish(result, check)

    def _run_scanned(
        self,
        args: List[str],
        extra_env: Optional[Mapping[str, str]],
        warning_marker: str,
    ) -> CommandResult:
        """Stream stdout through, stopping the process at the first warning line."""
        warning_line = None
        process = subprocess.Popen(
            args,
            stdout=subprocess.PIPE,
            env=self._child_env(extra_env),
            cwd=self.cwd,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
        )
        with process:
            for line in process.stdout:
                self.stdout.write(line)
                if warning_marker in line:
                    warning_line = line.rstrip("\n")
                    self.stdout.write(WARNING_ABORT_MESSAGE + "\n")
                    self.stdout.flush()
                    process.terminate()
                    break
            self.stdout.flush()
            returncode = process.wait()

        if warning_line is not None:
            self.logger.error("Warning marker found in command output", line=warning_line)
        return CommandResult(args=args, returncode=returncode, warning_line=warning_line)

    def capture(
        self,
        args: Sequence[str],
        *,
        extra_env: Optional[Mapping[str, str]] = None,
        check: bool = True,
    ) -> str:
        """
        Run a command and return its stdout.

        In a dry run the command is printed and an empty string returned.
        """
        args = [str(arg) for arg in args]
        if self.dry_run:
            self._echo(args, None)
            return ""

        self.logger.debug("Capturing command output", command=shlex.join(args))
        start = time.monotonic()
        try:
            completed = subprocess.run(
                args,
                stdout=subprocess.PIPE,
                env=self._child_env(extra_env),
                cwd=self.cwd,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError:
            self.logger.error("Executable not found", program=args[0])
            raise ExecutableNotFoundError(args[0])

        result = CommandResult(
            args=args,
            returncode=completed.returncode,
            duration_seconds=time.monotonic() - start,
            output=completed.stdout,
        )
        self._finish(result, check)
        return completed.stdout or ""

    def run_for_each(
        self,
        args: Sequence[str],
        items: Iterable[str],
        **kwargs,
    ) -> Optional[CommandResult]:
        """
        Append ``items`` to ``args`` and run once; skip entirely when empty.

        Mirrors ``xargs --no-run-if-empty``.
        """
        items = [item for item in items if item]
        if not items:
            self.logger.debug("Nothing to do", command=shlex.join(str(arg) for arg in args))
            return None
        return self.run(list(args) + items, **kwargs)
