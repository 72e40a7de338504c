"""Tests for scheduled-job reconciliation."""
from __future__ import annotations

import pytest
from fakes import FakeShell

from seedctl.cron import (
    CLEANUP_MARKER,
    DEPLOY_MARKER,
    CronManager,
    build_crontab,
    canonical_lines,
    cleanup_cron_line,
    deploy_cron_line,
    extract_cron_lines,
    remove_cron_lines,
    upsert_cron_lines,
)
from seedctl.errors import CronError
from seedctl.paths import DeployPaths

USER_LINE = "*/5 * * * * /home/op/bin/backup.sh"


def test_deploy_line_format(paths: DeployPaths) -> None:
    """The nightly job runs the deploy script and appends to deploy.log."""
    line = deploy_cron_line(paths, "/usr/bin/python3")

    assert line == (
        f"0 2 * * * /usr/bin/python3 {paths.deploy_script} deploy "
        f">> {paths.deploy_log} 2>&1 # seed-deploy"
    )


def test_cleanup_line_format() -> None:
    """Image cleanup runs every four hours."""
    assert cleanup_cron_line() == (
        '0 0,4,8,12,16,20 * * * docker image prune -a -f --filter "until=24h" # seed-cleanup'
    )
    assert 'until=48h"' in cleanup_cron_line("48h")


def test_custom_runner_only_affects_deploy_line(paths: DeployPaths) -> None:
    """The interpreter shows up in the nightly job and nowhere else."""
    deploy_line, cleanup_line = canonical_lines(paths, "/opt/seed/venv/bin/python")

    assert deploy_line.startswith("0 2 * * * /opt/seed/venv/bin/python ")
    assert "/opt/seed/venv/bin/python" not in cleanup_line
    assert cleanup_line == cleanup_cron_line()


def test_build_crontab_on_empty_table(paths: DeployPaths) -> None:
    """An empty table receives exactly the two managed lines."""
    table = build_crontab("", paths)

    assert table == "\n".join(canonical_lines(paths)) + "\n"


def test_build_crontab_keeps_user_entries(paths: DeployPaths) -> None:
    """Unrelated lines keep their order ahead of the managed block."""
    existing = f"# my jobs\n{USER_LINE}\n"

    table = build_crontab(existing, paths)

    lines = table.splitlines()
    assert lines[:2] == ["# my jobs", USER_LINE]
    assert sum(DEPLOY_MARKER in line for line in lines) == 1
    assert sum(CLEANUP_MARKER in line for line in lines) == 1


def test_build_crontab_is_idempotent(paths: DeployPaths) -> None:
    """Applying the canonical lines twice yields identical bytes."""
    once = build_crontab(f"{USER_LINE}\n", paths)
    assert build_crontab(once, paths) == once


def test_build_crontab_replaces_stale_lines(paths: DeployPaths) -> None:
    """Old managed lines are replaced, not duplicated."""
    stale = f"0 3 * * * old-deploy {DEPLOY_MARKER}\n{USER_LINE}\n\n\n"

    table = build_crontab(stale, paths)

    assert "old-deploy" not in table
    assert table.splitlines()[0] == USER_LINE
    assert "\n\n\n" not in table


def test_remove_cron_lines(paths: DeployPaths) -> None:
    """Removal keeps everything that is not managed."""
    table = build_crontab(f"{USER_LINE}\n", paths)

    assert remove_cron_lines(table) == f"{USER_LINE}\n"
    assert remove_cron_lines(build_crontab("", paths)) == ""


def test_extract_and_upsert_verbatim_lines(paths: DeployPaths) -> None:
    """Lines captured from one table install unchanged into another."""
    captured = extract_cron_lines(build_crontab("", paths) + "  \n")
    assert captured == canonical_lines(paths)

    table = upsert_cron_lines(f"{USER_LINE}\n", captured)
    assert table == "\n".join([USER_LINE, *captured]) + "\n"


def test_manager_install_writes_only_on_change(paths: DeployPaths) -> None:
    """A second install leaves the table untouched."""
    shell = FakeShell()
    manager = CronManager(shell)

    assert manager.install(paths) is True
    assert manager.install(paths) is False
    assert shell.calls.count("crontab -") == 1
    assert manager.current_lines() == canonical_lines(paths)


def test_manager_treats_missing_table_as_empty(paths: DeployPaths) -> None:
    """``crontab -l`` failing means no table yet."""
    shell = FakeShell(crontab=None)
    manager = CronManager(shell)

    assert manager.read() == ""
    assert manager.remove() is False


def test_manager_remove_and_restore(paths: DeployPaths) -> None:
    """Managed lines can be removed and later restored verbatim."""
    shell = FakeShell(crontab=f"{USER_LINE}\n")
    manager = CronManager(shell)
    manager.install(paths, "/opt/py", "12h")
    saved = manager.current_lines()

    assert manager.remove() is True
    assert shell.crontab == f"{USER_LINE}\n"
    assert manager.restore(saved) is True
    assert manager.current_lines() == saved
    assert "until=12h" in saved[1]


def test_manager_write_failure_raises_cron_error(paths: DeployPaths) -> None:
    """Failing to write the table surfaces as CronError."""
    shell = FakeShell().on("crontab -", None)
    shell.crontab = ""
    manager = CronManager(shell)

    with pytest.raises(CronError, match="Failed to write crontab"):
        manager.install(paths)
