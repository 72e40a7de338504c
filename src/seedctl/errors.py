"""Exception hierarchy shared across seedctl components."""
from __future__ import annotations


class SeedError(RuntimeError):
    """Base class for failures that abort the current command."""


class ConfigError(SeedError):
    """Raised when the node record or tool settings are missing or malformed."""


class CommandError(SeedError):
    """Raised when an external command exits non-zero or cannot be started."""

    def __init__(
        self,
        command: str,
        returncode: int | None,
        stderr: str = "",
        stdout: str = "",
    ) -> None:
        """Capture the failing command and whatever output it produced."""
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        detail = stderr.strip() or stdout.strip() or "no output"
        if returncode is None:
            message = f"{command!r} could not be executed: {detail}"
        else:
            message = f"{command!r} failed (exit {returncode}): {detail}"
        super().__init__(message)


class FetchError(SeedError):
    """Raised when a remote resource cannot be retrieved."""


class DeployError(SeedError):
    """Raised when the reconciliation engine cannot reach a healthy state."""


class BackupError(SeedError):
    """Raised when backup or restore operations fail."""


class CronError(SeedError):
    """Raised when the scheduled-job table cannot be read or written."""


class WizardCancelled(SeedError):  # noqa: N818 - reads naturally at call sites
    """Raised when the operator cancels an interactive flow."""


__all__ = [
    "BackupError",
    "CommandError",
    "ConfigError",
    "CronError",
    "DeployError",
    "FetchError",
    "SeedError",
    "WizardCancelled",
]
