"""Typer-powered command line for ``seedctl``.

Every command reads the node record through :class:`ConfigStore` and hands
off to one component: the setup flows, the reconciliation engine, the cron
reconciler or backup/restore. ``deploy`` is also what the nightly cron job
runs, in which case stdout is not a terminal and progress goes to
``deploy.log`` as timestamped lines.
"""
from __future__ import annotations

import asyncio
import json
import shlex
import shutil
import sys
import textwrap
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table
from typer.core import TyperGroup

from . import __version__
from .backups import (
    create_backup,
    format_size,
    latest_archive,
    read_backup_metadata,
    restore_backup,
    summarize_metadata,
)
from .config import DeploySettings, load_settings
from .cron import CronManager
from .engine import REQUIRED_CONTAINERS, ReconciliationEngine, check_containers_healthy
from .errors import (
    BackupError,
    CommandError,
    ConfigError,
    CronError,
    DeployError,
    FetchError,
    SeedError,
    WizardCancelled,
)
from .exit_codes import ExitCode
from .fetch import Fetcher, HttpFetcher
from .legacy import detect_legacy_install
from .logging import OperationScope, StructuredLogger, progress
from .node_config import ConfigStore, SeedConfig
from .paths import DeployPaths, make_paths, resolve_seed_dir
from .selfupdate import self_update
from .setup_flows import (
    legacy_from_config,
    run_fresh_setup,
    run_migration,
    run_reconfigure,
)
from .shell import ShellRunner, SubprocessShell
from .wizard import ConsoleWizard, Wizard

console = Console()
err_console = Console(stderr=True)

RESUME_HINT = "Run `seedctl deploy` again to resume setup."
LOG_DIR_NAME = "logs"

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to seedctl's YAML settings file.",
)

YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Skip the confirmation prompt.",
)


class SeedGroup(TyperGroup):
    """Root command group that prints help for unknown subcommands."""

    def resolve_command(
        self, ctx: typer.Context, args: list[str]
    ) -> tuple[str | None, Any, list[str]]:
        """Resolve *args* to a subcommand or exit with usage help."""
        name = args[0] if args else ""
        if name and not name.startswith("-") and self.get_command(ctx, name) is None:
            err_console.print(f"[red]No such command '{name}'.[/red]")
            typer.echo(ctx.get_help())
            ctx.exit(int(ExitCode.USAGE))
        return super().resolve_command(ctx, args)


app = typer.Typer(
    cls=SeedGroup,
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help=textwrap.dedent(
        """
        Deploy and maintain a self-hosted Seed node.

        Run `seedctl deploy` once interactively to configure the node. Later
        runs (including the nightly cron job) reconcile the running containers
        with the published compose manifest.

        The node directory is the one holding seedctl.pyz. When installed as a
        console script instead, set SEED_DIR to the node directory.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    settings: DeploySettings
    paths: DeployPaths
    store: ConfigStore
    shell: ShellRunner
    fetcher: Fetcher
    engine: ReconciliationEngine
    cron: CronManager
    logger: StructuredLogger
    wizard: Wizard
    script_path: Path
    interactive: bool
    reporter: Callable[[str], None]


def _is_interactive() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def _script_path() -> Path:
    return Path(sys.argv[0]).expanduser().resolve()


def _console_reporter(message: str) -> None:
    console.print(f"[cyan]›[/cyan] {message}", highlight=False)


def _build_runtime(config_file: Path | None, *, interactive: bool) -> RuntimeContext:
    settings = load_settings(config_file=config_file)
    script_path = _script_path()
    paths = make_paths(resolve_seed_dir(script_path=script_path))
    store = ConfigStore(paths)
    shell = SubprocessShell()
    fetcher = HttpFetcher(timeout=settings.fetch_timeout)
    reporter = _console_reporter if interactive else progress
    engine = ReconciliationEngine(
        paths,
        store,
        shell,
        fetcher,
        settings,
        reporter=reporter,
    )
    return RuntimeContext(
        settings=settings,
        paths=paths,
        store=store,
        shell=shell,
        fetcher=fetcher,
        engine=engine,
        cron=CronManager(shell),
        logger=StructuredLogger(paths.seed_dir / LOG_DIR_NAME),
        wizard=ConsoleWizard(console),
        script_path=script_path,
        interactive=interactive,
        reporter=reporter,
    )


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        runtime = _build_runtime(None, interactive=_is_interactive())
    except ConfigError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.ENVIRONMENT)) from exc
    ctx.obj = runtime
    return runtime


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"seedctl {__version__}")
        raise typer.Exit(code=0)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show the seedctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)
    if isinstance(ctx.obj, RuntimeContext):
        return
    try:
        ctx.obj = _build_runtime(config_file, interactive=_is_interactive())
    except ConfigError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.ENVIRONMENT)) from exc


def _exit_code_for(exc: SeedError) -> ExitCode:
    if isinstance(exc, ConfigError):
        return ExitCode.ENVIRONMENT
    if isinstance(exc, (FetchError, CommandError, DeployError)):
        return ExitCode.PROVIDER
    return ExitCode.FAILURE


def _command_error(op: OperationScope, message: str, *, rc: ExitCode) -> NoReturn:
    """Emit a structured error and terminate the command."""
    err_console.print(f"[red]{message}[/red]")
    op.error(message, errors=[message], rc=int(rc))
    raise typer.Exit(code=int(rc))


@contextmanager
def _guard(op: OperationScope) -> Iterator[None]:
    """Translate domain failures into exit codes for the enclosing command."""
    try:
        yield
    except WizardCancelled as exc:
        console.print(f"[yellow]{exc}[/yellow] {RESUME_HINT}")
        op.warning("Cancelled by operator.", warnings=[str(exc)])
        raise typer.Exit(code=int(ExitCode.OK)) from exc
    except SeedError as exc:
        _command_error(op, str(exc), rc=_exit_code_for(exc))


def _target(runtime: RuntimeContext) -> dict[str, object]:
    return {"kind": "node", "root": str(runtime.paths.seed_dir)}


def _maybe_self_update(runtime: RuntimeContext, op: OperationScope) -> None:
    script = runtime.script_path
    if script.suffix != ".pyz":
        op.add_step("selfupdate", status="skipped", detail="not running from the deploy script")
        return
    changed = asyncio.run(
        self_update(
            script,
            runtime.settings.script_url,
            runtime.fetcher,
            reporter=runtime.reporter,
        )
    )
    op.add_step("selfupdate", status="success" if changed else "skipped")


def _install_cron(runtime: RuntimeContext) -> bool:
    return runtime.cron.install(
        runtime.paths,
        runtime.settings.cron_runner,
        runtime.settings.prune.scheduled_until,
    )


def _offer_cron(runtime: RuntimeContext, op: OperationScope) -> None:
    wanted = runtime.wizard.confirm(
        "Install nightly cron job for automatic updates? (runs at 02:00)",
        default=True,
    )
    if not wanted:
        op.add_step("cron.install", status="skipped", detail="declined")
        return
    try:
        _install_cron(runtime)
    except CronError as exc:
        runtime.wizard.warn(f"Warning: {exc}")
        op.add_step("cron.install", status="warning", detail=str(exc))
        return
    runtime.wizard.success("Cron job installed. Your node will auto-update nightly at 02:00.")
    op.add_step("cron.install")


def _show_secret(runtime: RuntimeContext, config: SeedConfig) -> None:
    runtime.wizard.note(
        "\n".join(
            [
                f"Your site is live at {config.domain}",
                "",
                f"  Secret:  {config.link_secret}",
                "",
                "Open the Seed desktop app and enter this secret to link",
                "your publisher account to this site.",
            ]
        ),
        "Setup complete",
    )


def _require_config(runtime: RuntimeContext) -> SeedConfig:
    if not runtime.store.exists():
        raise ConfigError(
            f"No node configuration found at {runtime.store.path}. "
            "Run `seedctl deploy` interactively first."
        )
    return runtime.store.read()


@app.command()
def deploy(
    ctx: typer.Context,
    reconfigure: bool = typer.Option(
        False,
        "--reconfigure",
        help="Edit the stored configuration before deploying (interactive only).",
    ),
) -> None:
    """Configure the node if needed and reconcile the running containers."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "deploy",
        args={"reconfigure": reconfigure, "interactive": runtime.interactive},
        target=_target(runtime),
    ) as op, _guard(op):
        if not runtime.interactive:
            _maybe_self_update(runtime, op)

        first_setup = False
        force = False
        if runtime.store.exists():
            config = runtime.store.read()
            if reconfigure and runtime.interactive:
                config = run_reconfigure(runtime.wizard, runtime.store, config)
                op.add_step("setup.reconfigure")
                force = True
            elif reconfigure:
                runtime.reporter("--reconfigure needs an interactive terminal; deploying as is.")
            else:
                runtime.reporter(
                    f"seedctl {__version__}: config found at {runtime.store.path}, "
                    "running headless."
                )
        elif not runtime.interactive:
            raise ConfigError(
                f"No node configuration found at {runtime.store.path}. "
                "Run `seedctl deploy` interactively first."
            )
        else:
            legacy = detect_legacy_install(runtime.shell)
            if legacy is not None:
                config = run_migration(
                    runtime.wizard,
                    runtime.store,
                    runtime.settings,
                    runtime.shell,
                    legacy,
                )
                op.add_step("setup.migration", detail=str(legacy.workspace))
            else:
                config = run_fresh_setup(runtime.wizard, runtime.store, runtime.settings)
                op.add_step("setup.fresh")
            first_setup = True
            _offer_cron(runtime, op)

        result = asyncio.run(runtime.engine.deploy(config, force=force, op=op))
        if first_setup and result.first_deploy and config.link_secret:
            _show_secret(runtime, config)
        op.success(
            f"Deploy finished: {result.state.value}.",
            changed=1 if result.changed else 0,
            context={"compose_sha": result.compose_sha, "state": result.state.value},
        )


def _compose_action(ctx: typer.Context, command: str, args: str, done: str) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(command, target=_target(runtime)) as op, _guard(op):
        config = _require_config(runtime)
        result = asyncio.run(runtime.engine.run_compose(config, args))
        if result.stdout:
            console.print(result.stdout, highlight=False, markup=False)
        op.add_step(f"compose.{command}")
        console.print(f"[green]{done}[/green]")
        op.success(done, changed=1)


@app.command()
def start(ctx: typer.Context) -> None:
    """Start the node's containers."""
    _compose_action(ctx, "start", "up -d", "Containers started.")


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop the node's containers."""
    _compose_action(ctx, "stop", "stop", "Containers stopped.")


@app.command()
def restart(ctx: typer.Context) -> None:
    """Restart the node's containers."""
    _compose_action(ctx, "restart", "restart", "Containers restarted.")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show container state and the last reconciliation."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("status", target=_target(runtime)) as op, _guard(op):
        config = _require_config(runtime)
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Container", style="bold")
        table.add_column("Running")
        for name in REQUIRED_CONTAINERS:
            running = runtime.shell.run_safe(
                f"docker inspect {name} --format '{{{{.State.Running}}}}' 2>/dev/null"
            )
            label = "[green]yes[/green]" if running == "true" else "[red]no[/red]"
            table.add_row(name, label)
        console.print(table)
        console.print(f"Domain: {config.domain}", highlight=False)
        console.print(f"Environment: {config.environment}", highlight=False)
        console.print(f"Compose SHA: {config.compose_sha[:12] or '(never deployed)'}")
        console.print(f"Last run: {config.last_script_run or '(never)'}")
        healthy = check_containers_healthy(runtime.shell)
        op.success(
            "Reported node status.",
            context={"healthy": healthy, "compose_sha": config.compose_sha},
        )


@app.command("config")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the node record as JSON instead of a table.",
    ),
) -> None:
    """Display the stored node configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config",
        args={"json": json_output},
        target=_target(runtime),
    ) as op, _guard(op):
        data = _require_config(runtime).to_dict()
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            rendered = json.dumps(value) if isinstance(value, (dict, bool)) else str(value)
            table.add_row(key, rendered)
        console.print(table)
        console.print(f"Path: {runtime.store.path}", highlight=False)
        op.success("Rendered configuration table.")


@app.command()
def logs(
    ctx: typer.Context,
    service: str | None = typer.Argument(None, help="Only show logs for this service."),
    tail: int = typer.Option(100, "--tail", "-n", min=1, help="Number of lines per service."),
) -> None:
    """Show recent container logs."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "logs",
        args={"service": service, "tail": tail},
        target=_target(runtime),
    ) as op, _guard(op):
        config = _require_config(runtime)
        args = f"logs --no-color --tail {tail}"
        if service:
            args = f"{args} {shlex.quote(service)}"
        result = asyncio.run(runtime.engine.run_compose(config, args))
        console.print(result.stdout, highlight=False, markup=False)
        op.success("Rendered container logs.")


@app.command()
def cron(
    ctx: typer.Context,
    action: str = typer.Argument("install", help="install or remove."),
) -> None:
    """Install or remove the nightly deploy and image cleanup jobs."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "cron",
        args={"action": action},
        target=_target(runtime),
    ) as op, _guard(op):
        if action == "install":
            _require_config(runtime)
            changed = _install_cron(runtime)
            message = "Cron jobs installed." if changed else "Cron jobs already up to date."
        elif action == "remove":
            changed = runtime.cron.remove()
            message = "Cron jobs removed." if changed else "No seed cron jobs installed."
        else:
            _command_error(
                op,
                f"Unknown cron action '{action}'. Use install or remove.",
                rc=ExitCode.USAGE,
            )
        console.print(f"[green]{message}[/green]")
        op.success(message, changed=1 if changed else 0)


@app.command()
def backup(
    ctx: typer.Context,
    path: Path | None = typer.Argument(None, dir_okay=False, help="Archive to write."),
) -> None:
    """Stop the node, archive its data and start it again."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "backup",
        args={"path": str(path) if path else None},
        target=_target(runtime),
    ) as op, _guard(op):
        config = _require_config(runtime)
        result = asyncio.run(
            create_backup(runtime.engine, config, runtime.cron, archive_path=path)
        )
        console.print(
            f"[green]Backup written to {result.archive} ({format_size(result.size_bytes)}).[/green]"
        )
        op.success(
            "Backup created.",
            changed=1,
            backups=[str(result.archive)],
            context={"size_bytes": result.size_bytes},
        )


@app.command()
def restore(
    ctx: typer.Context,
    path: Path | None = typer.Argument(None, dir_okay=False, help="Archive to restore."),
    yes: bool = YES_OPTION,
) -> None:
    """Replace the node's data with a backup archive and redeploy."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "restore",
        args={"path": str(path) if path else None, "yes": yes},
        target=_target(runtime),
    ) as op, _guard(op):
        archive = path or latest_archive(runtime.paths)
        if archive is None:
            raise BackupError(f"No backups found in {runtime.paths.seed_dir / 'backups'}.")
        metadata = read_backup_metadata(archive)
        runtime.wizard.note(summarize_metadata(metadata, archive), "Restore")
        if not yes:
            if not runtime.interactive:
                raise ConfigError("Restore overwrites the node; pass --yes to confirm.")
            confirmed = runtime.wizard.confirm(
                f"This replaces everything under {runtime.paths.seed_dir}. Continue?",
                default=False,
            )
            if not confirmed:
                raise WizardCancelled("Restore cancelled.")

        restore_backup(runtime.engine, runtime.cron, archive, metadata)
        op.add_step("restore.extract", detail=str(archive))
        config = runtime.store.read()
        if runtime.interactive and runtime.wizard.confirm(
            "Review the restored configuration before deploying?", default=False
        ):
            config = run_migration(
                runtime.wizard,
                runtime.store,
                runtime.settings,
                runtime.shell,
                legacy_from_config(config, runtime.paths.seed_dir),
            )
            op.add_step("setup.migration", detail="restored record")
        result = asyncio.run(runtime.engine.deploy(config, force=True, op=op))
        console.print(f"[green]Restored {archive} and redeployed.[/green]")
        op.success(
            "Restore complete.",
            changed=1,
            backups=[str(archive)],
            context={"state": result.state.value},
        )


@app.command()
def uninstall(
    ctx: typer.Context,
    purge: bool = typer.Option(
        False,
        "--purge",
        help="Also delete the node directory, including all data and backups.",
    ),
    yes: bool = YES_OPTION,
) -> None:
    """Stop the node, remove its cron jobs and delete its configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "uninstall",
        args={"purge": purge, "yes": yes},
        target=_target(runtime),
    ) as op, _guard(op):
        config = _require_config(runtime)
        if not yes:
            if not runtime.interactive:
                raise ConfigError("Uninstall is destructive; pass --yes to confirm.")
            scope = "and ALL data " if purge else ""
            if not runtime.wizard.confirm(
                f"Remove the Seed node {scope}at {runtime.paths.seed_dir}?", default=False
            ):
                raise WizardCancelled("Uninstall cancelled.")

        try:
            asyncio.run(runtime.engine.run_compose(config, "down"))
            op.add_step("compose.down")
        except CommandError as exc:
            runtime.reporter(f"docker compose down failed: {exc}")
            op.add_step("compose.down", status="warning", detail=str(exc))
        runtime.cron.remove()
        op.add_step("cron.remove")
        runtime.store.delete()
        op.add_step("config.delete")
        if purge:
            shutil.rmtree(runtime.paths.seed_dir, ignore_errors=True)
            op.add_step("root.delete")
        console.print("[green]Seed node uninstalled.[/green]")
        op.success("Node uninstalled.", changed=1)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
