"""Tests for legacy installation detection."""
from __future__ import annotations

import json
from pathlib import Path

from fakes import FakeShell

from seedctl.legacy import (
    LegacyInstall,
    detect_legacy_install,
    infer_environment,
    parse_daemon_env,
    parse_image_tag,
    parse_web_env,
    read_registration_secret,
)

DAEMON_ENV = json.dumps(["PATH=/bin", "SEED_LOG_LEVEL=debug", "SEED_P2P_TESTNET_NAME=dev"])
WEB_ENV = json.dumps(
    [
        "SEED_BASE_URL=https://old.example.test",
        "SEED_IS_GATEWAY=true",
        "SEED_ENABLE_STATISTICS=false",
    ]
)


def test_parse_daemon_env() -> None:
    """Log level and testnet flag come from the daemon environment."""
    parsed = parse_daemon_env(DAEMON_ENV)
    assert parsed.log_level == "debug"
    assert parsed.testnet is True
    assert parse_daemon_env(json.dumps(["SEED_P2P_TESTNET_NAME="])).testnet is False


def test_parse_web_env() -> None:
    """Hostname and feature flags come from the web environment."""
    parsed = parse_web_env(WEB_ENV)
    assert parsed.hostname == "https://old.example.test"
    assert parsed.gateway is True
    assert parsed.analytics is False


def test_parsers_tolerate_garbage() -> None:
    """Unparsable payloads yield defaults."""
    assert parse_daemon_env("not json").log_level is None
    assert parse_web_env('{"a": 1}').hostname is None


def test_parse_image_tag() -> None:
    """The tag is whatever follows the last colon."""
    assert parse_image_tag("seedhypermedia/web:dev") == "dev"
    assert parse_image_tag("seedhypermedia/web") == "latest"
    assert parse_image_tag("registry:5000/seed/web") == "latest"


def test_infer_environment(tmp_path: Path) -> None:
    """Testnet wins, then the dev image tag, else prod."""
    assert infer_environment(LegacyInstall(workspace=tmp_path, testnet=True)) == "dev"
    assert infer_environment(LegacyInstall(workspace=tmp_path, image_tag="dev")) == "staging"
    assert infer_environment(LegacyInstall(workspace=tmp_path, image_tag="latest")) == "prod"


def test_read_registration_secret_prefers_first_secret(tmp_path: Path) -> None:
    """The first file holding a secret wins."""
    first = tmp_path / "a.json"
    second = tmp_path / "b.json"
    first.write_text(json.dumps({"registeredAccountUid": "z6Mk"}), encoding="utf-8")
    second.write_text(json.dumps({"availableRegistrationSecret": "abc"}), encoding="utf-8")

    assert read_registration_secret([tmp_path / "missing.json", first, second]) == ("abc", False)


def test_read_registration_secret_consumed(tmp_path: Path) -> None:
    """A registered account without a secret means the secret was spent."""
    linked = tmp_path / "config.json"
    linked.write_text(json.dumps({"registeredAccountUid": "z6Mk"}), encoding="utf-8")

    assert read_registration_secret([linked]) == (None, True)
    assert read_registration_secret([]) == (None, False)


def test_detect_returns_none_without_traces(tmp_path: Path) -> None:
    """No workspace and no seed containers means no legacy install."""
    shell = FakeShell().on("docker ps", "postgres\nredis")

    found = detect_legacy_install(
        shell,
        home=tmp_path,
        workspace_candidates=[tmp_path / "missing"],
        secret_paths=[],
    )
    assert found is None


def test_detect_reads_workspace_and_containers(tmp_path: Path) -> None:
    """Workspace, secret and container environments are combined."""
    workspace = tmp_path / ".seed-site"
    (workspace / "web").mkdir(parents=True)
    secret_file = workspace / "web" / "config.json"
    secret_file.write_text(json.dumps({"availableRegistrationSecret": "s3cr3t"}), encoding="utf-8")
    shell = (
        FakeShell()
        .on("seed-daemon --format '{{json .Config.Env}}'", DAEMON_ENV)
        .on("seed-web --format '{{json .Config.Env}}'", WEB_ENV)
        .on("seed-web --format '{{.Config.Image}}'", "seedhypermedia/web:dev")
    )

    found = detect_legacy_install(
        shell,
        home=tmp_path,
        workspace_candidates=[workspace],
        secret_paths=[secret_file],
    )

    assert found == LegacyInstall(
        workspace=workspace,
        secret="s3cr3t",
        secret_consumed=False,
        hostname="https://old.example.test",
        log_level="debug",
        image_tag="dev",
        testnet=True,
        gateway=True,
        analytics=False,
    )


def test_detect_from_containers_only(tmp_path: Path) -> None:
    """Running seed containers are enough; the workspace defaults under home."""
    shell = FakeShell().on("docker ps", "seed-web\nseed-daemon").on("docker inspect", None)

    found = detect_legacy_install(
        shell,
        home=tmp_path,
        workspace_candidates=[tmp_path / "nope"],
        secret_paths=[],
    )

    assert found is not None
    assert found.workspace == tmp_path / ".seed-site"
    assert found.hostname is None
    assert found.image_tag is None
