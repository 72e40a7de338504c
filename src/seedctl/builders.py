"""Pure builders turning a node record into runtime inputs.

Nothing here touches the filesystem or runs commands: the compose
environment line, the proxy configuration text and the workspace layout are
all derived from the record and the path set alone.
"""
from __future__ import annotations

import os
import re
import shlex
from pathlib import Path

from .config import LIGHTNING_URL_MAINNET, LIGHTNING_URL_TESTNET, NOTIFY_SERVICE_HOST
from .node_config import SeedConfig
from .paths import DeployPaths
from .templates import CADDYFILE, load_template

_SCHEME_RE = re.compile(r"^https?://")
_TRAILING_SLASHES_RE = re.compile(r"/+$")
_ENV_ESCAPE_RE = re.compile(r'([\\"$`])')

TESTNET_NAME = "dev"
CADDYFILE_RELATIVE_PATH = Path("proxy") / "CaddyFile"


def extract_dns(domain: str) -> str:
    """Return the bare DNS name of *domain*, e.g. ``https://a.b/`` -> ``a.b``."""
    return _TRAILING_SLASHES_RE.sub("", _SCHEME_RE.sub("", domain))


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _escape(value: str) -> str:
    return _ENV_ESCAPE_RE.sub(r"\\\1", value)


def compose_env_vars(
    config: SeedConfig,
    paths: DeployPaths,
    *,
    uid: int | None = None,
    gid: int | None = None,
) -> dict[str, str]:
    """Return the ordered variables injected into every compose invocation."""
    effective_uid = os.geteuid() if uid is None else uid
    effective_gid = os.getegid() if gid is None else gid
    return {
        "SEED_SITE_HOSTNAME": config.domain,
        "SEED_SITE_DNS": extract_dns(config.domain),
        "SEED_SITE_TAG": config.release_channel,
        "SEED_SITE_WORKSPACE": str(paths.seed_dir),
        "SEED_UID": str(effective_uid),
        "SEED_GID": str(effective_gid),
        "SEED_LOG_LEVEL": config.log_level,
        "SEED_IS_GATEWAY": _flag(config.gateway),
        "SEED_ENABLE_STATISTICS": _flag(config.analytics),
        "SEED_P2P_TESTNET_NAME": TESTNET_NAME if config.testnet else "",
        "SEED_LIGHTNING_URL": LIGHTNING_URL_TESTNET if config.testnet else LIGHTNING_URL_MAINNET,
        "NOTIFY_SERVICE_HOST": NOTIFY_SERVICE_HOST,
        "SEED_SITE_MONITORING_WORKDIR": str(paths.seed_dir / "monitoring"),
    }


def build_compose_env(
    config: SeedConfig,
    paths: DeployPaths,
    *,
    uid: int | None = None,
    gid: int | None = None,
) -> str:
    """Return ``NAME="value"`` assignments suitable for prefixing a shell command."""
    variables = compose_env_vars(config, paths, uid=uid, gid=gid)
    return " ".join(f'{name}="{_escape(value)}"' for name, value in variables.items())


def compose_command(
    config: SeedConfig,
    paths: DeployPaths,
    args: str,
    *,
    uid: int | None = None,
    gid: int | None = None,
) -> str:
    """Return a ``docker compose`` invocation against the node's manifest."""
    env = build_compose_env(config, paths, uid=uid, gid=gid)
    return f"{env} docker compose -f {shlex.quote(str(paths.compose_path))} {args}"


def generate_caddyfile(config: SeedConfig | None = None) -> str:  # noqa: ARG001
    """Return the reverse-proxy configuration.

    The document is identical for every node. Site-specific values are
    substituted by Caddy at container start from the compose environment, so
    *config* is accepted only for call-site symmetry.
    """
    return load_template(CADDYFILE)


def get_workspace_dirs(paths: DeployPaths) -> list[Path]:
    """Return the directories the compose services mount.

    The daemon always mounts the monitoring volumes, so they are created even
    when the monitoring profile is not running.
    """
    root = paths.seed_dir
    return [
        root / "proxy",
        root / "proxy" / "data",
        root / "proxy" / "config",
        root / "web",
        root / "daemon",
        root / "monitoring",
        root / "monitoring" / "grafana",
        root / "monitoring" / "prometheus",
    ]


__all__ = [
    "CADDYFILE_RELATIVE_PATH",
    "build_compose_env",
    "compose_command",
    "compose_env_vars",
    "extract_dns",
    "generate_caddyfile",
    "get_workspace_dirs",
]
