"""Tests for the interactive setup, reconfigure and migration flows."""
from __future__ import annotations

from pathlib import Path

import pytest
from fakes import CANCEL, FakeShell, ScriptedWizard

from seedctl.config import DeploySettings
from seedctl.errors import WizardCancelled
from seedctl.legacy import LegacyInstall
from seedctl.node_config import ConfigStore, SeedConfig
from seedctl.setup_flows import (
    Answers,
    apply_answers,
    changed_fields,
    legacy_from_config,
    repair_ownership,
    run_fresh_setup,
    run_migration,
    run_reconfigure,
    summarize_config,
)
from seedctl.wizard import validate_email, validate_hostname

KEEP_DEFAULTS = [None, None, None, None, None, None]


def test_validators() -> None:
    """Hostnames need a scheme; email is optional but must look like one."""
    assert validate_hostname("") == "Required"
    assert validate_hostname("node.test") == "Must start with https:// or http://"
    assert validate_hostname("http://node.test") is None
    assert validate_email("") is None
    assert validate_email("nope") == "Must be a valid email"
    assert validate_email("a@b.test") is None


def test_fresh_setup_persists_answers(
    wizard: ScriptedWizard, store: ConfigStore, settings: DeploySettings
) -> None:
    """The six answers plus derived presets are written after confirmation."""
    wizard.answers = ["https://node.test", "", "dev", "debug", True, False, True]

    config = run_fresh_setup(wizard, store, settings, secret_factory=lambda: "FixedSecr3")

    assert config == store.read()
    assert config.domain == "https://node.test"
    assert config.email == ""
    assert config.environment == "dev"
    assert config.testnet is True
    assert config.release_channel == "dev"
    assert config.compose_envs == {"LOG_LEVEL": "debug"}
    assert config.gateway is True
    assert config.analytics is False
    assert config.link_secret == "FixedSecr3"
    assert config.compose_url == settings.default_compose_url
    assert config.compose_sha == ""
    assert wizard.notes[-1][0] == "Configuration summary"


def test_fresh_setup_reasks_invalid_answers(
    wizard: ScriptedWizard, store: ConfigStore, settings: DeploySettings
) -> None:
    """Invalid text answers are rejected until valid."""
    wizard.answers = ["node.test", "https://node.test", "bad", "ops@node.test", *KEEP_DEFAULTS[:4]]
    wizard.answers.append(True)

    config = run_fresh_setup(wizard, store, settings, secret_factory=lambda: "s")

    assert wizard.rejected == ["Must start with https:// or http://", "Must be a valid email"]
    assert config.email == "ops@node.test"
    assert config.environment == "prod"
    assert config.log_level == "info"


def test_declining_confirmation_writes_nothing(
    wizard: ScriptedWizard, store: ConfigStore, settings: DeploySettings
) -> None:
    """Answering no at the summary cancels the flow."""
    wizard.answers = ["https://node.test", *KEEP_DEFAULTS[1:], False]

    with pytest.raises(WizardCancelled, match="Setup cancelled"):
        run_fresh_setup(wizard, store, settings)

    assert store.exists() is False


def test_abort_mid_flow_writes_nothing(
    wizard: ScriptedWizard, store: ConfigStore, settings: DeploySettings
) -> None:
    """Aborting any prompt cancels the flow."""
    wizard.answers = ["https://node.test", CANCEL]

    with pytest.raises(WizardCancelled):
        run_fresh_setup(wizard, store, settings)

    assert store.exists() is False


def test_reconfigure_without_changes(
    wizard: ScriptedWizard, store: ConfigStore, seed_config: SeedConfig
) -> None:
    """Accepting every default reports no changes and keeps the record."""
    seed_config.compose_sha = "abc123"
    wizard.answers = [*KEEP_DEFAULTS, True]

    updated = run_reconfigure(wizard, store, seed_config)

    assert updated == seed_config
    assert ("Reconfigure", "No changes.") in wizard.notes
    assert "(changed)" not in wizard.notes[-1][1]
    assert store.read().compose_sha == "abc123"


def test_reconfigure_environment_change_rederives_presets(
    wizard: ScriptedWizard, store: ConfigStore, seed_config: SeedConfig
) -> None:
    """Switching environment updates the network and channel; the secret survives."""
    wizard.answers = [None, None, "dev", None, None, None, True]

    updated = run_reconfigure(wizard, store, seed_config)

    assert updated.testnet is True
    assert updated.release_channel == "dev"
    assert updated.link_secret == seed_config.link_secret
    summary = wizard.notes[-1][1]
    assert "  environment: dev  (changed)" in summary
    assert "  testnet: true  (changed)" in summary
    assert "  domain: https://node.example.test\n" in summary


def test_reconfigure_keeps_hand_edited_flags(seed_config: SeedConfig) -> None:
    """Flags are left alone when the environment label does not change."""
    seed_config.testnet = True
    answers = Answers(domain=seed_config.domain, email="new@node.test", environment="prod")

    updated = apply_answers(seed_config, answers)

    assert updated.testnet is True
    assert changed_fields(seed_config, updated) == ["email"]


def test_summary_hides_bookkeeping(seed_config: SeedConfig) -> None:
    """Digest and timestamp are not shown to the operator."""
    seed_config.compose_sha = "deadbeef"
    seed_config.last_script_run = "2026-01-01T00:00:00.000Z"

    summary = summarize_config(seed_config)

    assert "deadbeef" not in summary
    assert "last_script_run" not in summary
    assert '  compose_envs: {"LOG_LEVEL": "info"}' in summary


def _legacy(workspace: Path, **overrides: object) -> LegacyInstall:
    values: dict[str, object] = {
        "workspace": workspace,
        "hostname": "https://old.node.test",
        "log_level": "warn",
        "image_tag": "dev",
        "gateway": True,
    }
    values.update(overrides)
    return LegacyInstall(**values)  # type: ignore[arg-type]


def test_migration_imports_legacy_values_and_secret(
    wizard: ScriptedWizard,
    store: ConfigStore,
    settings: DeploySettings,
    shell: FakeShell,
    tmp_path: Path,
) -> None:
    """Detected values become defaults and the legacy secret is kept."""
    wizard.answers = [*KEEP_DEFAULTS, True]
    legacy = _legacy(tmp_path / ".seed-site", secret="LegacySecret")

    config = run_migration(wizard, store, settings, shell, legacy, uid=1000, gid=1000)

    assert config.domain == "https://old.node.test"
    assert config.environment == "staging"
    assert config.log_level == "warn"
    assert config.gateway is True
    assert config.link_secret == "LegacySecret"
    assert store.read() == config


def test_migration_with_consumed_secret(
    wizard: ScriptedWizard,
    store: ConfigStore,
    settings: DeploySettings,
    shell: FakeShell,
    tmp_path: Path,
) -> None:
    """A site already linked gets no secret."""
    wizard.answers = [*KEEP_DEFAULTS, True]
    legacy = _legacy(tmp_path, secret_consumed=True)

    config = run_migration(
        wizard, store, settings, shell, legacy, secret_factory=lambda: "unused"
    )

    assert config.link_secret == ""


def test_migration_generates_missing_secret(
    wizard: ScriptedWizard,
    store: ConfigStore,
    settings: DeploySettings,
    shell: FakeShell,
    tmp_path: Path,
) -> None:
    """Without a legacy secret a fresh one is generated and the operator warned."""
    wizard.answers = [*KEEP_DEFAULTS, True]

    config = run_migration(
        wizard, store, settings, shell, _legacy(tmp_path), secret_factory=lambda: "Generated1"
    )

    assert config.link_secret == "Generated1"
    assert "No existing registration secret found. Generated a new one." in wizard.messages


def test_migration_repairs_web_ownership(
    wizard: ScriptedWizard,
    store: ConfigStore,
    settings: DeploySettings,
    shell: FakeShell,
    tmp_path: Path,
) -> None:
    """The legacy web directory is handed to the invoking user."""
    wizard.answers = [*KEEP_DEFAULTS, True]
    shell.on("stat -c", "0:0")

    run_migration(wizard, store, settings, shell, _legacy(tmp_path), uid=1000, gid=1000)

    assert shell.ran(f"chown -R 1000:1000 {tmp_path / 'web'}")
    assert not shell.ran("sudo chown")


def test_repair_ownership_escalates_when_needed(shell: FakeShell, tmp_path: Path) -> None:
    """sudo is used only after the plain chown fails."""
    shell.on("stat -c", "0:0").on("chown -R", None).on("sudo chown -R", "")

    assert repair_ownership(shell, tmp_path, uid=1000, gid=1000) is True
    assert shell.calls[-1] == f"sudo chown -R 1000:1000 {tmp_path}"


def test_repair_ownership_noop_when_already_owned(shell: FakeShell, tmp_path: Path) -> None:
    """Correct ownership needs no chown."""
    shell.on("stat -c", "1000:1000")

    assert repair_ownership(shell, tmp_path, uid=1000, gid=1000) is False
    assert not shell.ran("chown")


def test_legacy_from_config_prefills_migration(seed_config: SeedConfig, tmp_path: Path) -> None:
    """A restored record maps back onto migration defaults."""
    legacy = legacy_from_config(seed_config, tmp_path)

    assert legacy.hostname == seed_config.domain
    assert legacy.secret == "Secret1234"
    assert legacy.secret_consumed is False
    assert legacy.log_level == "info"
