"""The persisted node record (``config.json``) and its store."""
from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path

from .errors import ConfigError
from .paths import DeployPaths

ENVIRONMENTS = ("prod", "staging", "dev")
LOG_LEVELS = ("debug", "info", "warn", "error")


@dataclass(frozen=True, slots=True)
class EnvironmentPreset:
    """Network mode and release channel derived from an environment label."""

    testnet: bool
    release_channel: str


def environment_presets(environment: str) -> EnvironmentPreset:
    """Return the flags implied by *environment*; unknown labels map to prod."""
    if environment == "dev":
        return EnvironmentPreset(testnet=True, release_channel="dev")
    if environment == "staging":
        return EnvironmentPreset(testnet=False, release_channel="dev")
    return EnvironmentPreset(testnet=False, release_channel="latest")


@dataclass(slots=True)
class SeedConfig:
    """Configuration of a single node installation."""

    domain: str
    email: str
    compose_url: str
    compose_sha: str = ""
    compose_envs: dict[str, str] = field(default_factory=lambda: {"LOG_LEVEL": "info"})
    environment: str = "prod"
    release_channel: str = "latest"
    testnet: bool = False
    link_secret: str = ""
    analytics: bool = False
    gateway: bool = False
    last_script_run: str = ""

    @property
    def log_level(self) -> str:
        """Log level passed through to the services."""
        return self.compose_envs.get("LOG_LEVEL", "info")

    def presets_drifted(self) -> bool:
        """Return True when the stored flags no longer match the environment label."""
        preset = environment_presets(self.environment)
        return (self.testnet, self.release_channel) != (preset.testnet, preset.release_channel)

    def to_dict(self) -> dict[str, object]:
        """Return the JSON payload in canonical field order."""
        return {
            "domain": self.domain,
            "email": self.email,
            "compose_url": self.compose_url,
            "compose_sha": self.compose_sha,
            "compose_envs": dict(self.compose_envs),
            "environment": self.environment,
            "release_channel": self.release_channel,
            "testnet": self.testnet,
            "link_secret": self.link_secret,
            "analytics": self.analytics,
            "gateway": self.gateway,
            "last_script_run": self.last_script_run,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object], *, source: str = "config") -> SeedConfig:
        """Validate *payload* and build a record; raise :class:`ConfigError` if malformed."""
        known = {item.name for item in fields(cls)}
        missing = {"domain", "compose_url"} - set(payload.keys())
        if missing:
            joined = ", ".join(sorted(missing))
            raise ConfigError(f"{source} is missing required keys: {joined}.")
        unknown = set(payload.keys()) - known
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"{source} contains unknown keys: {joined}.")

        envs_raw = payload.get("compose_envs", {"LOG_LEVEL": "info"})
        if not isinstance(envs_raw, Mapping):
            raise ConfigError(f"{source}: compose_envs must be an object.")
        compose_envs = {
            str(key): _expect_str(value, f"compose_envs.{key}", source)
            for key, value in envs_raw.items()
        }
        compose_envs.setdefault("LOG_LEVEL", "info")

        return cls(
            domain=_expect_str(payload.get("domain"), "domain", source),
            email=_expect_str(payload.get("email", ""), "email", source),
            compose_url=_expect_str(payload.get("compose_url"), "compose_url", source),
            compose_sha=_expect_str(payload.get("compose_sha", ""), "compose_sha", source),
            compose_envs=compose_envs,
            environment=_expect_str(payload.get("environment", "prod"), "environment", source),
            release_channel=_expect_str(
                payload.get("release_channel", "latest"), "release_channel", source
            ),
            testnet=_expect_bool(payload.get("testnet", False), "testnet", source),
            link_secret=_expect_str(payload.get("link_secret", ""), "link_secret", source),
            analytics=_expect_bool(payload.get("analytics", False), "analytics", source),
            gateway=_expect_bool(payload.get("gateway", False), "gateway", source),
            last_script_run=_expect_str(
                payload.get("last_script_run", ""), "last_script_run", source
            ),
        )


def _expect_str(value: object, key: str, source: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"{source}: {key} must be a string. Got {value!r}.")


def _expect_bool(value: object, key: str, source: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{source}: {key} must be a boolean. Got {value!r}.")


@dataclass(frozen=True, slots=True)
class ConfigStore:
    """Read and write the node record at ``paths.config_path``."""

    paths: DeployPaths

    @property
    def path(self) -> Path:
        """Location of ``config.json``."""
        return self.paths.config_path

    def exists(self) -> bool:
        """Return True when a node record has been written."""
        return self.path.is_file()

    def read(self) -> SeedConfig:
        """Return the persisted record."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ConfigError(f"No node configuration found at {self.path}.") from exc
        except OSError as exc:
            raise ConfigError(f"Failed to read {self.path}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Node configuration corrupted ({self.path}): {exc}") from exc
        if not isinstance(data, Mapping):
            raise ConfigError(f"Node configuration must be a JSON object ({self.path}).")
        return SeedConfig.from_dict(data, source=str(self.path))

    def write(self, config: SeedConfig) -> None:
        """Atomically persist *config* as pretty-printed JSON with a trailing newline."""
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"Failed to prepare {directory}: {exc}") from exc
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=f".{self.path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(config.to_dict(), handle, indent=2, sort_keys=False)
                handle.write("\n")
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise ConfigError(f"Failed to write node configuration: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def delete(self) -> bool:
        """Remove the record; return True when a file was deleted."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True


__all__ = [
    "ConfigStore",
    "ENVIRONMENTS",
    "EnvironmentPreset",
    "LOG_LEVELS",
    "SeedConfig",
    "environment_presets",
]
