"""Scheduled-job reconciliation for the user's crontab.

Seed owns exactly two lines in the table, identified by trailing marker
comments. Every write removes all marked lines and appends the canonical
ones, so applying the same table twice yields identical bytes and unrelated
entries keep their order.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence

from .errors import CommandError, CronError
from .paths import DeployPaths
from .shell import ShellRunner

DEPLOY_MARKER = "# seed-deploy"
CLEANUP_MARKER = "# seed-cleanup"
MARKERS = (DEPLOY_MARKER, CLEANUP_MARKER)
DEFAULT_RUNNER = "/usr/bin/python3"
DEFAULT_CLEANUP_UNTIL = "24h"


def deploy_cron_line(paths: DeployPaths, runner: str = DEFAULT_RUNNER) -> str:
    """Return the nightly reconciliation line."""
    return (
        f"0 2 * * * {runner} {paths.deploy_script} deploy "
        f">> {paths.deploy_log} 2>&1 {DEPLOY_MARKER}"
    )


def cleanup_cron_line(until: str = DEFAULT_CLEANUP_UNTIL) -> str:
    """Return the image cleanup line (every four hours)."""
    return (
        "0 0,4,8,12,16,20 * * * docker image prune -a -f "
        f'--filter "until={until}" {CLEANUP_MARKER}'
    )


def canonical_lines(
    paths: DeployPaths,
    runner: str = DEFAULT_RUNNER,
    cleanup_until: str = DEFAULT_CLEANUP_UNTIL,
) -> list[str]:
    """Return both managed lines in table order."""
    return [deploy_cron_line(paths, runner), cleanup_cron_line(cleanup_until)]


def _is_managed(line: str) -> bool:
    return any(marker in line for marker in MARKERS)


def _join(lines: Iterable[str]) -> str:
    collapsed: list[str] = []
    for line in lines:
        stripped = line.rstrip()
        if not stripped and (not collapsed or not collapsed[-1]):
            continue
        collapsed.append(stripped)
    while collapsed and not collapsed[-1]:
        collapsed.pop()
    if not collapsed:
        return ""
    return "\n".join(collapsed) + "\n"


def remove_cron_lines(existing: str) -> str:
    """Return *existing* without any managed line."""
    return _join(line for line in existing.splitlines() if not _is_managed(line))


def extract_cron_lines(existing: str) -> list[str]:
    """Return the managed lines present in *existing*."""
    return [line.strip() for line in existing.splitlines() if _is_managed(line)]


def upsert_cron_lines(existing: str, lines: Sequence[str]) -> str:
    """Replace every managed line in *existing* with *lines*."""
    kept = [line for line in existing.splitlines() if not _is_managed(line)]
    return _join([*kept, *(line.strip() for line in lines)])


def build_crontab(
    existing: str,
    paths: DeployPaths,
    runner: str = DEFAULT_RUNNER,
    cleanup_until: str = DEFAULT_CLEANUP_UNTIL,
) -> str:
    """Return *existing* with the canonical managed lines installed."""
    return upsert_cron_lines(existing, canonical_lines(paths, runner, cleanup_until))


class CronManager:
    """Read and write the invoking user's crontab through the shell gateway."""

    def __init__(self, shell: ShellRunner) -> None:
        """Bind the manager to *shell*."""
        self.shell = shell

    def read(self) -> str:
        """Return the current table; a missing table reads as empty."""
        return self.shell.run_safe("crontab -l 2>/dev/null") or ""

    def write(self, table: str) -> None:
        """Replace the table with *table*."""
        try:
            self.shell.run("crontab -", input=table)
        except CommandError as exc:
            raise CronError(f"Failed to write crontab: {exc}") from exc

    def current_lines(self) -> list[str]:
        """Return the managed lines currently installed."""
        return extract_cron_lines(self.read())

    def install(
        self,
        paths: DeployPaths,
        runner: str = DEFAULT_RUNNER,
        cleanup_until: str = DEFAULT_CLEANUP_UNTIL,
    ) -> bool:
        """Install the canonical lines; return True when the table changed."""
        existing = self.read()
        updated = build_crontab(existing, paths, runner, cleanup_until)
        if updated == existing:
            return False
        self.write(updated)
        return True

    def restore(self, lines: Sequence[str]) -> bool:
        """Install *lines* verbatim in place of the managed ones."""
        existing = self.read()
        updated = upsert_cron_lines(existing, lines)
        if updated == existing:
            return False
        self.write(updated)
        return True

    def remove(self) -> bool:
        """Remove the managed lines; return True when the table changed."""
        existing = self.read()
        updated = remove_cron_lines(existing)
        if updated == existing:
            return False
        self.write(updated)
        return True


__all__ = [
    "CLEANUP_MARKER",
    "CronManager",
    "DEFAULT_RUNNER",
    "DEPLOY_MARKER",
    "build_crontab",
    "canonical_lines",
    "cleanup_cron_line",
    "deploy_cron_line",
    "extract_cron_lines",
    "remove_cron_lines",
    "upsert_cron_lines",
]
