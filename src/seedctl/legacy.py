"""Detection of pre-declarative Seed installations.

Older nodes were started with ad-hoc ``docker run`` invocations and kept their
state under ``~/.seed-site`` or ``/shm``. Nothing about them is recorded in a
single place, so the snapshot built here is reconstructed from whatever is
observable: workspace directories, the web service's ``config.json`` and the
environment of the running containers. Every probe tolerates absence; a
missing container or unparsable payload yields the default value.
"""
from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .shell import ShellRunner

LEGACY_CONTAINER_MARKER = "seed"
DEFAULT_IMAGE_TAG = "latest"
STAGING_IMAGE_TAG = "dev"


@dataclass(frozen=True, slots=True)
class DaemonEnv:
    """Settings recovered from the ``seed-daemon`` container environment."""

    log_level: str | None = None
    testnet: bool = False


@dataclass(frozen=True, slots=True)
class WebEnv:
    """Settings recovered from the ``seed-web`` container environment."""

    hostname: str | None = None
    gateway: bool = False
    analytics: bool = False


@dataclass(frozen=True, slots=True)
class LegacyInstall:
    """Approximate configuration of a legacy installation."""

    workspace: Path
    secret: str | None = None
    secret_consumed: bool = False
    hostname: str | None = None
    log_level: str | None = None
    image_tag: str | None = None
    testnet: bool = False
    gateway: bool = False
    analytics: bool = False


def _parse_env_array(env_json: str) -> list[str]:
    try:
        payload = json.loads(env_json)
    except (json.JSONDecodeError, TypeError):
        return []
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, str)]


def _split_entry(entry: str) -> tuple[str, str]:
    key, _, value = entry.partition("=")
    return key, value


def parse_daemon_env(env_json: str) -> DaemonEnv:
    """Parse ``docker inspect`` env output of the daemon container."""
    log_level: str | None = None
    testnet = False
    for entry in _parse_env_array(env_json):
        key, value = _split_entry(entry)
        if key == "SEED_LOG_LEVEL":
            log_level = value
        elif key == "SEED_P2P_TESTNET_NAME" and value:
            testnet = True
    return DaemonEnv(log_level=log_level, testnet=testnet)


def parse_web_env(env_json: str) -> WebEnv:
    """Parse ``docker inspect`` env output of the web container."""
    hostname: str | None = None
    gateway = False
    analytics = False
    for entry in _parse_env_array(env_json):
        key, value = _split_entry(entry)
        if key == "SEED_BASE_URL":
            hostname = value
        elif key == "SEED_IS_GATEWAY":
            gateway = value == "true"
        elif key == "SEED_ENABLE_STATISTICS":
            analytics = value == "true"
    return WebEnv(hostname=hostname, gateway=gateway, analytics=analytics)


def parse_image_tag(image: str) -> str:
    """Return the tag of *image* (text after the final colon), ``latest`` if none."""
    _, sep, tag = image.strip().rpartition(":")
    if not sep or not tag or "/" in tag:
        return DEFAULT_IMAGE_TAG
    return tag


def infer_environment(legacy: LegacyInstall) -> str:
    """Suggest an environment label for *legacy*; only used as a default choice."""
    if legacy.testnet:
        return "dev"
    if legacy.image_tag == STAGING_IMAGE_TAG:
        return "staging"
    return "prod"


def default_workspace_candidates(home: Path) -> list[Path]:
    """Return the directories legacy installs used, in probe order."""
    return [home / ".seed-site", Path("/shm/gateway"), Path("/shm")]


def default_secret_paths(workspace: Path, home: Path) -> list[Path]:
    """Return the web config files that may hold the registration secret."""
    return [
        workspace / "web" / "config.json",
        Path("/shm/gateway/web/config.json"),
        home / ".seed-site" / "web" / "config.json",
    ]


def read_registration_secret(candidates: Sequence[Path]) -> tuple[str | None, bool]:
    """Return ``(secret, consumed)`` from the first parsable web config.

    A secret field wins immediately. A ``registeredAccountUid`` without a
    secret means the site was already linked and the secret was spent.
    """
    consumed = False
    for path in candidates:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError):
            continue
        if not isinstance(payload, dict):
            continue
        secret = payload.get("availableRegistrationSecret")
        if isinstance(secret, str) and secret:
            return secret, False
        if payload.get("registeredAccountUid"):
            consumed = True
    return None, consumed


def _has_legacy_containers(shell: ShellRunner) -> bool:
    names = shell.run_safe("docker ps --format '{{.Names}}' 2>/dev/null")
    if not names:
        return False
    return any(LEGACY_CONTAINER_MARKER in line for line in names.splitlines())


def detect_legacy_install(
    shell: ShellRunner,
    *,
    home: Path | None = None,
    workspace_candidates: Sequence[Path] | None = None,
    secret_paths: Sequence[Path] | None = None,
) -> LegacyInstall | None:
    """Return a snapshot of a legacy install, or ``None`` when there is none."""
    home_dir = home if home is not None else Path.home()
    candidates = (
        list(workspace_candidates)
        if workspace_candidates is not None
        else default_workspace_candidates(home_dir)
    )

    workspace = next((candidate for candidate in candidates if candidate.is_dir()), None)
    if workspace is None and not _has_legacy_containers(shell):
        return None
    if workspace is None:
        workspace = home_dir / ".seed-site"

    secret_candidates = (
        list(secret_paths)
        if secret_paths is not None
        else default_secret_paths(workspace, home_dir)
    )
    secret, consumed = read_registration_secret(secret_candidates)

    daemon = DaemonEnv()
    daemon_env = shell.run_safe(
        "docker inspect seed-daemon --format '{{json .Config.Env}}' 2>/dev/null"
    )
    if daemon_env:
        daemon = parse_daemon_env(daemon_env)

    web = WebEnv()
    web_env = shell.run_safe("docker inspect seed-web --format '{{json .Config.Env}}' 2>/dev/null")
    if web_env:
        web = parse_web_env(web_env)

    image_tag: str | None = None
    web_image = shell.run_safe("docker inspect seed-web --format '{{.Config.Image}}' 2>/dev/null")
    if web_image:
        image_tag = parse_image_tag(web_image)

    return LegacyInstall(
        workspace=workspace,
        secret=secret,
        secret_consumed=consumed,
        hostname=web.hostname,
        log_level=daemon.log_level,
        image_tag=image_tag,
        testnet=daemon.testnet,
        gateway=web.gateway,
        analytics=web.analytics,
    )


__all__ = [
    "DaemonEnv",
    "LegacyInstall",
    "WebEnv",
    "detect_legacy_install",
    "infer_environment",
    "parse_daemon_env",
    "parse_image_tag",
    "parse_web_env",
    "read_registration_secret",
]
