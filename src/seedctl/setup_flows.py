"""Interactive flows that produce and persist the node record.

Three flows share the same six questions and differ only in where their
defaults come from: fixed literals (fresh install), the existing record
(reconfigure) or a legacy snapshot (migration). Each ends with an explicit
confirmation; declining or aborting raises :class:`WizardCancelled` and
nothing is written.
"""
from __future__ import annotations

import json
import os
import shlex
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from .config import DeploySettings
from .errors import WizardCancelled
from .hashing import generate_secret
from .legacy import LegacyInstall, infer_environment
from .node_config import ConfigStore, SeedConfig, environment_presets
from .shell import ShellRunner
from .wizard import Choice, Wizard, validate_email, validate_hostname

ENVIRONMENT_CHOICES = (
    Choice("prod", "Production", "stable releases, mainnet network (recommended)"),
    Choice("staging", "Staging", "development builds, mainnet network"),
    Choice("dev", "Development", "development builds, testnet network"),
)

LOG_LEVEL_CHOICES = (
    Choice("debug", "Debug", "very verbose, useful for troubleshooting"),
    Choice("info", "Info", "standard operational logging (recommended)"),
    Choice("warn", "Warn", "only warnings and errors"),
    Choice("error", "Error", "only critical errors"),
)

HOSTNAME_PLACEHOLDER = "https://node1.seed.run"
EMAIL_PLACEHOLDER = "you@example.com"

# Bookkeeping fields are hidden from the pre-confirmation summary.
_SUMMARY_HIDDEN = frozenset({"compose_sha", "last_script_run"})


@dataclass(frozen=True, slots=True)
class Answers:
    """Operator answers shared by every setup flow."""

    domain: str = ""
    email: str = ""
    environment: str = "prod"
    log_level: str = "info"
    gateway: bool = False
    analytics: bool = False


def ask_answers(wizard: Wizard, defaults: Answers) -> Answers:
    """Ask the six setup questions, pre-filled from *defaults*."""
    domain = wizard.text(
        "Public hostname (including https://)",
        default=defaults.domain,
        placeholder=HOSTNAME_PLACEHOLDER,
        validate=validate_hostname,
    )
    email = wizard.text(
        "Contact email for security notices and node issues (optional, not shared)",
        default=defaults.email,
        placeholder=EMAIL_PLACEHOLDER,
        validate=validate_email,
    )
    environment = wizard.select(
        "Environment", ENVIRONMENT_CHOICES, default=defaults.environment
    )
    log_level = wizard.select(
        "Log level for Seed services", LOG_LEVEL_CHOICES, default=defaults.log_level
    )
    gateway = wizard.confirm(
        "Run as a public gateway? (serves all known public content)",
        default=defaults.gateway,
    )
    analytics = wizard.confirm(
        "Enable web analytics? Adds a Plausible.io dashboard for your site's traffic.",
        default=defaults.analytics,
    )
    return Answers(
        domain=domain,
        email=email,
        environment=environment,
        log_level=log_level,
        gateway=gateway,
        analytics=analytics,
    )


def build_config(answers: Answers, *, compose_url: str, link_secret: str) -> SeedConfig:
    """Return a brand-new record built from *answers*."""
    preset = environment_presets(answers.environment)
    return SeedConfig(
        domain=answers.domain,
        email=answers.email,
        compose_url=compose_url,
        compose_sha="",
        compose_envs={"LOG_LEVEL": answers.log_level},
        environment=answers.environment,
        release_channel=preset.release_channel,
        testnet=preset.testnet,
        link_secret=link_secret,
        analytics=answers.analytics,
        gateway=answers.gateway,
        last_script_run="",
    )


def apply_answers(existing: SeedConfig, answers: Answers) -> SeedConfig:
    """Return *existing* updated with *answers*.

    Secret, digest, timestamp and manifest URL are kept. The network mode and
    release channel are re-derived only when the environment label changes,
    so hand-edited values survive a reconfigure that leaves it alone.
    """
    compose_envs = dict(existing.compose_envs)
    compose_envs["LOG_LEVEL"] = answers.log_level
    updated = replace(
        existing,
        domain=answers.domain,
        email=answers.email,
        compose_envs=compose_envs,
        environment=answers.environment,
        gateway=answers.gateway,
        analytics=answers.analytics,
    )
    if answers.environment != existing.environment:
        preset = environment_presets(answers.environment)
        updated.testnet = preset.testnet
        updated.release_channel = preset.release_channel
    return updated


def changed_fields(before: SeedConfig, after: SeedConfig) -> list[str]:
    """Return the record keys whose values differ between *before* and *after*."""
    old = before.to_dict()
    return [key for key, value in after.to_dict().items() if old.get(key) != value]


def summarize_config(config: SeedConfig, *, previous: SeedConfig | None = None) -> str:
    """Render the pre-confirmation summary, flagging fields changed since *previous*."""
    changed = set(changed_fields(previous, config)) if previous is not None else set()
    lines: list[str] = []
    for key, value in config.to_dict().items():
        if key in _SUMMARY_HIDDEN:
            continue
        rendered = json.dumps(value) if isinstance(value, (dict, bool)) else str(value)
        marker = "  (changed)" if key in changed else ""
        lines.append(f"  {key}: {rendered}{marker}")
    return "\n".join(lines)


def _confirm_and_persist(
    wizard: Wizard,
    store: ConfigStore,
    config: SeedConfig,
    *,
    summary: str,
    cancel_message: str,
) -> SeedConfig:
    wizard.note(summary, "Configuration summary")
    if not wizard.confirm("Write config and proceed with deployment?", default=True):
        raise WizardCancelled(cancel_message)
    store.write(config)
    wizard.success(f"Config written to {store.path}")
    return config


def run_fresh_setup(
    wizard: Wizard,
    store: ConfigStore,
    settings: DeploySettings,
    *,
    secret_factory: Callable[[], str] = generate_secret,
) -> SeedConfig:
    """First-time setup with built-in defaults and a freshly generated secret."""
    wizard.intro("Seed Node Setup")
    wizard.note(
        "\n".join(
            [
                "Welcome! This wizard will configure your new Seed node.",
                "",
                "It sets up the containers, reverse proxy and networking so your",
                "node is reachable on the public internet.",
                "",
                f"Configuration will be saved to {store.path}.",
                "Subsequent runs deploy automatically (headless mode).",
            ]
        ),
        "First-time setup",
    )
    answers = ask_answers(wizard, Answers())
    config = build_config(
        answers,
        compose_url=settings.default_compose_url,
        link_secret=secret_factory(),
    )
    return _confirm_and_persist(
        wizard,
        store,
        config,
        summary=summarize_config(config),
        cancel_message="Setup cancelled.",
    )


def run_reconfigure(wizard: Wizard, store: ConfigStore, existing: SeedConfig) -> SeedConfig:
    """Edit an existing record; the summary flags every changed field."""
    wizard.intro("Seed Node Reconfiguration")
    defaults = Answers(
        domain=existing.domain,
        email=existing.email,
        environment=existing.environment,
        log_level=existing.log_level,
        gateway=existing.gateway,
        analytics=existing.analytics,
    )
    answers = ask_answers(wizard, defaults)
    updated = apply_answers(existing, answers)
    if not changed_fields(existing, updated):
        wizard.note("No changes.", "Reconfigure")
    return _confirm_and_persist(
        wizard,
        store,
        updated,
        summary=summarize_config(updated, previous=existing),
        cancel_message="Reconfiguration cancelled.",
    )


def run_migration(
    wizard: Wizard,
    store: ConfigStore,
    settings: DeploySettings,
    shell: ShellRunner,
    legacy: LegacyInstall,
    *,
    uid: int | None = None,
    gid: int | None = None,
    secret_factory: Callable[[], str] = generate_secret,
) -> SeedConfig:
    """Import a legacy installation into a new record and fix data ownership."""
    wizard.intro("Seed Node Migration")
    wizard.note(
        "\n".join(
            [
                f"Detected an existing Seed installation at: {legacy.workspace}",
                "",
                "Its current settings will be imported into the declarative setup.",
                f"After migration the node is managed from {store.paths.seed_dir}.",
                "",
                "Please review and confirm the detected values below.",
            ]
        ),
        "Existing installation found",
    )
    defaults = Answers(
        domain=legacy.hostname or "",
        environment=infer_environment(legacy),
        log_level=legacy.log_level or "info",
        gateway=legacy.gateway,
        analytics=legacy.analytics,
    )
    answers = ask_answers(wizard, defaults)

    if legacy.secret:
        secret = legacy.secret
        wizard.success("Registration secret imported from existing installation.")
    elif legacy.secret_consumed:
        secret = ""
        wizard.success("Site already linked to a publisher account; no secret needed.")
    else:
        secret = secret_factory()
        wizard.warn("No existing registration secret found. Generated a new one.")

    config = build_config(answers, compose_url=settings.default_compose_url, link_secret=secret)
    _confirm_and_persist(
        wizard,
        store,
        config,
        summary=summarize_config(config),
        cancel_message="Migration cancelled.",
    )

    web_dir = legacy.workspace / "web"
    if repair_ownership(shell, web_dir, uid=uid, gid=gid):
        wizard.success(f"Ownership of {web_dir} updated.")
    return config


def repair_ownership(
    shell: ShellRunner,
    directory: Path,
    *,
    uid: int | None = None,
    gid: int | None = None,
) -> bool:
    """Give *directory* to the effective user; return True when ownership changed.

    The unprivileged ``chown`` is tried first and ``sudo`` only when it fails.
    """
    owner_uid = os.geteuid() if uid is None else uid
    owner_gid = os.getegid() if gid is None else gid
    wanted = f"{owner_uid}:{owner_gid}"
    quoted = shlex.quote(str(directory))
    current = shell.run_safe(f"stat -c '%u:%g' {quoted} 2>/dev/null")
    if not current or current == wanted:
        return False
    if shell.run_safe(f"chown -R {wanted} {quoted} 2>/dev/null") is None:
        if shell.run_safe(f"sudo chown -R {wanted} {quoted}") is None:
            return False
    return True


def legacy_from_config(config: SeedConfig, workspace: Path) -> LegacyInstall:
    """Describe a restored record as a legacy snapshot to pre-fill the migration flow."""
    return LegacyInstall(
        workspace=workspace,
        secret=config.link_secret or None,
        secret_consumed=not config.link_secret,
        hostname=config.domain,
        log_level=config.log_level,
        image_tag=config.release_channel,
        testnet=config.testnet,
        gateway=config.gateway,
        analytics=config.analytics,
    )


__all__ = [
    "Answers",
    "ENVIRONMENT_CHOICES",
    "LOG_LEVEL_CHOICES",
    "apply_answers",
    "ask_answers",
    "build_config",
    "changed_fields",
    "legacy_from_config",
    "repair_ownership",
    "run_fresh_setup",
    "run_migration",
    "run_reconfigure",
    "summarize_config",
]
