"""Filesystem locations derived from the node root directory."""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError

SEED_DIR_ENV_VAR = "SEED_DIR"
SCRIPT_NAME = "seedctl.pyz"


@dataclass(frozen=True, slots=True)
class DeployPaths:
    """The fixed set of paths used by a node installation."""

    seed_dir: Path
    config_path: Path
    compose_path: Path
    deploy_log: Path
    deploy_script: Path


def make_paths(seed_dir: str | os.PathLike[str]) -> DeployPaths:
    """Return the path set rooted at *seed_dir*."""
    root = Path(seed_dir)
    return DeployPaths(
        seed_dir=root,
        config_path=root / "config.json",
        compose_path=root / "docker-compose.yml",
        deploy_log=root / "deploy.log",
        deploy_script=root / SCRIPT_NAME,
    )


def resolve_seed_dir(
    env: Mapping[str, str] | None = None,
    script_path: str | os.PathLike[str] | None = None,
) -> Path:
    """Return the node root: ``SEED_DIR`` when set, else the script's directory.

    Only a ``.pyz`` bundle lives in its node root. Any other launcher, such as a
    pip console script in a virtualenv ``bin/``, must name the root explicitly.
    """
    resolved_env = os.environ if env is None else env
    override = resolved_env.get(SEED_DIR_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    if script_path is None or Path(script_path).suffix != ".pyz":
        raise ConfigError(
            f"Set {SEED_DIR_ENV_VAR} to the node directory when seedctl is not run from "
            f"its {SCRIPT_NAME} bundle."
        )
    return Path(script_path).expanduser().resolve().parent


__all__ = ["DeployPaths", "SCRIPT_NAME", "SEED_DIR_ENV_VAR", "make_paths", "resolve_seed_dir"]
