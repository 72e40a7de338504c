"""Settings loader for seedctl.

This module centralises the tool's own knobs (where to fetch from, how long to
wait for health, which interpreter runs the nightly job). Values are merged
from multiple sources:

1. Built-in defaults.
2. ``/etc/seed/deploy.yml`` (or the path in ``SEED_DEPLOY_CONFIG_FILE``).
3. Environment variables prefixed with ``SEED_DEPLOY_``.
4. Explicit overrides supplied programmatically.

Environment keys use double underscores to express nesting, e.g.::

    export SEED_DEPLOY_HEALTH__ATTEMPTS=20
    export SEED_DEPLOY_FETCH_TIMEOUT=60

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. ``SEED_REPO_URL`` is honoured separately: when set it
replaces the repository base for both the compose manifest and the script
self-update, and takes precedence over the URL stored in the node record.

These settings are distinct from the node record (``config.json``), which is
handled by :mod:`seedctl.node_config`.
"""
from __future__ import annotations

import copy
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import yaml

from .errors import ConfigError

ENV_PREFIX = "SEED_DEPLOY_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
REPO_ENV_VAR = "SEED_REPO_URL"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

DEFAULT_REPO_URL = "https://raw.githubusercontent.com/seed-hypermedia/seed/main"
NOTIFY_SERVICE_HOST = "https://notify.seed.hyper.media"
LIGHTNING_URL_MAINNET = "https://ln.seed.hyper.media"
LIGHTNING_URL_TESTNET = "https://ln.testnet.seed.hyper.media"


@dataclass(frozen=True)
class HealthCheckConfig:
    """Post-deploy health polling parameters."""

    attempts: int = 10
    interval: float = 3.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"attempts": self.attempts, "interval": self.interval}


@dataclass(frozen=True)
class PruneConfig:
    """Image retention windows passed to ``docker image prune``."""

    post_deploy_until: str = "10m"
    scheduled_until: str = "24h"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "post_deploy_until": self.post_deploy_until,
            "scheduled_until": self.scheduled_until,
        }


@dataclass(frozen=True)
class DeploySettings:
    """Resolved settings for seedctl."""

    config_file: Path
    repo_url: str
    repo_override: str | None
    compose_path: str
    script_path: str
    cron_runner: str
    fetch_timeout: float
    health: HealthCheckConfig
    prune: PruneConfig

    @property
    def default_compose_url(self) -> str:
        """Compose URL stored in newly created node records."""
        return f"{self.repo_url}/{self.compose_path}"

    @property
    def script_url(self) -> str:
        """Location of the latest published deploy script."""
        return f"{self.repo_url}/{self.script_path}"

    def compose_url_for(self, stored_url: str) -> str:
        """Return the manifest URL to fetch, honouring ``SEED_REPO_URL``."""
        if self.repo_override:
            return f"{self.repo_override}/{self.compose_path}"
        return stored_url

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the settings."""
        return {
            "config_file": str(self.config_file),
            "repo_url": self.repo_url,
            "repo_override": self.repo_override,
            "compose_path": self.compose_path,
            "script_path": self.script_path,
            "cron_runner": self.cron_runner,
            "fetch_timeout": self.fetch_timeout,
            "health": self.health.to_dict(),
            "prune": self.prune.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/seed/deploy.yml",
    "repo_url": DEFAULT_REPO_URL,
    "compose_path": "ops/docker-compose.yml",
    "script_path": "ops/dist/seedctl.pyz",
    "cron_runner": "/usr/bin/python3",
    "fetch_timeout": 30.0,
    "health": {
        "attempts": 10,
        "interval": 3.0,
    },
    "prune": {
        "post_deploy_until": "10m",
        "scheduled_until": "24h",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, frozenset[str]] = {
    "health": frozenset({"attempts", "interval"}),
    "prune": frozenset({"post_deploy_until", "scheduled_until"}),
}


def load_settings(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> DeploySettings:
    """Load and merge settings sources into a :class:`DeploySettings`."""
    source_env = dict(os.environ if env is None else env)
    settings_path = _settings_path(config_file, source_env)

    layered = copy.deepcopy(DEFAULTS)
    for layer in (
        _read_settings_file(settings_path),
        _env_layer(source_env),
        dict(overrides or {}),
    ):
        _merge_into(layered, layer)
    layered["config_file"] = str(settings_path)

    _reject_unknown_keys(layered)
    repo_override = source_env.get(REPO_ENV_VAR, "").strip().rstrip("/") or None
    return _build_settings(layered, repo_override)


def _settings_path(explicit: str | os.PathLike[str] | None, env: Mapping[str, str]) -> Path:
    if explicit:
        return Path(explicit)
    return Path(env.get(CONFIG_ENV_VAR) or str(DEFAULTS["config_file"]))


def _read_settings_file(path: Path) -> dict[str, object]:
    if not path.is_file():
        return {}
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse settings file {path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, Mapping):
        raise ConfigError(f"Settings file {path} must contain a mapping at the top level.")
    return _string_keyed(loaded, str(path))


def _reject_unknown_keys(raw: Mapping[str, object]) -> None:
    extra = sorted(set(raw) - ALLOWED_TOP_LEVEL_KEYS)
    if extra:
        raise ConfigError(f"Unknown settings keys: {', '.join(extra)}.")
    for section, allowed in SECTION_KEYS.items():
        extra = sorted(set(_string_keyed(raw.get(section), section)) - allowed)
        if extra:
            raise ConfigError(f"Unknown {section} settings keys: {', '.join(extra)}.")


def _build_settings(raw: Mapping[str, object], repo_override: str | None) -> DeploySettings:
    health = _string_keyed(raw.get("health"), "health")
    attempts = _integer(health.get("attempts", 10), "health.attempts")
    if attempts <= 0:
        raise ConfigError("health.attempts must be greater than zero.")

    prune = _string_keyed(raw.get("prune"), "prune")
    config_file = raw.get("config_file")
    if not isinstance(config_file, (str, Path)):
        raise ConfigError(f"Cannot use {config_file!r} as the settings path.")

    return DeploySettings(
        config_file=Path(config_file).expanduser(),
        repo_url=repo_override or _text(raw.get("repo_url"), "repo_url").rstrip("/"),
        repo_override=repo_override,
        compose_path=_text(raw.get("compose_path"), "compose_path").strip("/"),
        script_path=_text(raw.get("script_path"), "script_path").strip("/"),
        cron_runner=_text(raw.get("cron_runner"), "cron_runner"),
        fetch_timeout=_seconds(raw.get("fetch_timeout", 30.0), "fetch_timeout"),
        health=HealthCheckConfig(
            attempts=attempts,
            interval=_seconds(health.get("interval", 3.0), "health.interval"),
        ),
        prune=PruneConfig(
            post_deploy_until=_text(
                prune.get("post_deploy_until", "10m"), "prune.post_deploy_until"
            ),
            scheduled_until=_text(prune.get("scheduled_until", "24h"), "prune.scheduled_until"),
        ),
    )


def _env_layer(env: Mapping[str, str]) -> dict[str, object]:
    """Turn ``SEED_DEPLOY_A__B=value`` variables into ``{"a": {"b": value}}``."""
    layer: dict[str, object] = {}
    for name, raw in env.items():
        if name in RESERVED_ENV_KEYS or not name.startswith(ENV_PREFIX):
            continue
        parts = [part.lower() for part in name[len(ENV_PREFIX) :].split("__") if part]
        if not parts:
            continue
        *parents, leaf = parts
        node: dict[str, object] = layer
        for part in parents:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Environment variable {name} nests under a scalar setting.")
            node = child
        node[leaf] = _parse_env_value(raw)
    return layer


def _parse_env_value(raw: str) -> object:
    text = raw.strip()
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:  # pragma: no cover - keep the literal text
        return text


def _merge_into(target: dict[str, object], layer: Mapping[str, object]) -> None:
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge_into(current, _string_keyed(value, key))
        else:
            target[key] = copy.deepcopy(value)


def _text(value: object, key: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    raise ConfigError(f"Expected {key} to be a non-empty string. Got {value!r}.")


def _integer(value: object, label: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            pass
    raise ConfigError(f"Expected {label} to be an integer. Got {value!r}.")


def _seconds(value: object, label: str) -> float:
    """Accept ints, floats and numeric strings; reject booleans and negatives."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(f"Expected {label} to be a number. Got {value!r}.")
    try:
        seconds = float(value)
    except ValueError as exc:
        raise ConfigError(f"Expected {label} to be a number. Got {value!r}.") from exc
    if seconds < 0:
        raise ConfigError(f"{label} must not be negative. Got {seconds}.")
    return seconds


def _string_keyed(value: object, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    bad = [key for key in value if not isinstance(key, str)]
    if bad:
        raise ConfigError(f"Mapping {label} must use string keys. Got {bad[0]!r}.")
    return dict(value)


__all__ = [
    "DEFAULT_REPO_URL",
    "DeploySettings",
    "HealthCheckConfig",
    "LIGHTNING_URL_MAINNET",
    "LIGHTNING_URL_TESTNET",
    "NOTIFY_SERVICE_HOST",
    "PruneConfig",
    "REPO_ENV_VAR",
    "load_settings",
]
