"""Command execution gateway.

Every interaction with docker, crontab, chown and friends goes through a
:class:`ShellRunner`. Components receive the runner explicitly so tests can
substitute scripted fakes.

``run`` and ``exec`` raise :class:`~seedctl.errors.CommandError` on failure.
``run_safe`` is the probing variant: absence of a container, an unreadable
crontab or a missing binary is a normal outcome there, reported as ``None``.
"""
from __future__ import annotations

import asyncio
import subprocess
from dataclasses import dataclass
from typing import Protocol

from .errors import CommandError

RUN_TIMEOUT_SECONDS = 30.0
EXEC_TIMEOUT_SECONDS = 120.0


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Output captured from an asynchronous command."""

    stdout: str
    stderr: str


class ShellRunner(Protocol):
    """Capability for invoking external programs."""

    def run(self, cmd: str, *, input: str | None = None) -> str:  # noqa: A002
        """Execute *cmd* and return trimmed stdout; raise on failure."""
        ...

    def run_safe(self, cmd: str, *, input: str | None = None) -> str | None:  # noqa: A002
        """Execute *cmd* and return trimmed stdout, or ``None`` on failure."""
        ...

    async def exec(self, cmd: str) -> CommandResult:
        """Execute *cmd* asynchronously; raise on failure."""
        ...


@dataclass(slots=True)
class SubprocessShell:
    """:class:`ShellRunner` backed by ``/bin/sh`` via :mod:`subprocess`."""

    run_timeout: float = RUN_TIMEOUT_SECONDS
    exec_timeout: float = EXEC_TIMEOUT_SECONDS

    def run(self, cmd: str, *, input: str | None = None) -> str:  # noqa: A002
        """Execute *cmd* and return trimmed stdout; raise on failure."""
        try:
            result = subprocess.run(  # noqa: S602 - commands are composed internally
                cmd,
                shell=True,
                capture_output=True,
                text=True,
                input=input,
                timeout=self.run_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandError(cmd, None, f"timed out after {self.run_timeout:g}s") from exc
        except OSError as exc:
            raise CommandError(cmd, None, str(exc)) from exc
        if result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr or "", result.stdout or "")
        return (result.stdout or "").strip()

    def run_safe(self, cmd: str, *, input: str | None = None) -> str | None:  # noqa: A002
        """Execute *cmd* and return trimmed stdout, or ``None`` on failure."""
        try:
            return self.run(cmd, input=input)
        except CommandError:
            return None

    async def exec(self, cmd: str) -> CommandResult:
        """Execute *cmd* asynchronously; raise on failure."""
        try:
            process = await asyncio.create_subprocess_shell(
                cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CommandError(cmd, None, str(exc)) from exc
        try:
            stdout_raw, stderr_raw = await asyncio.wait_for(
                process.communicate(),
                timeout=self.exec_timeout,
            )
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            raise CommandError(cmd, None, f"timed out after {self.exec_timeout:g}s") from exc
        stdout = stdout_raw.decode("utf-8", errors="replace").strip()
        stderr = stderr_raw.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            raise CommandError(cmd, process.returncode, stderr, stdout)
        return CommandResult(stdout=stdout, stderr=stderr)


__all__ = [
    "CommandResult",
    "EXEC_TIMEOUT_SECONDS",
    "RUN_TIMEOUT_SECONDS",
    "ShellRunner",
    "SubprocessShell",
]
