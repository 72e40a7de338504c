"""Thin wrappers around the system ``tar`` binary for backup archives."""
from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

from .errors import BackupError


def _tar() -> str:
    tar_bin = shutil.which("tar")
    if tar_bin is None:
        raise BackupError("The 'tar' command is required for backups.")
    return tar_bin


def _run_tar(args: Sequence[str], failure: str) -> str:
    result = subprocess.run(  # noqa: S603 - controlled command execution
        [_tar(), *args],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        message = (result.stderr or result.stdout or "tar command failed").strip()
        raise BackupError(f"{failure}: {message}")
    return result.stdout


def create_archive(source_dir: Path, archive_path: Path, members: Sequence[str]) -> None:
    """Create a gzip tarball of *members* (relative to *source_dir*) at *archive_path*."""
    present = [name for name in members if (source_dir / name).exists()]
    if not present:
        raise BackupError(f"Nothing to back up under {source_dir}.")
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    _run_tar(
        ["-czf", str(archive_path), "-C", str(source_dir), *present],
        "Failed to create backup archive",
    )
    try:
        os.chmod(archive_path, 0o600)
    except OSError:
        pass


def read_member(archive_path: Path, member: str) -> str:
    """Return the text of a single *member* without extracting the archive."""
    return _run_tar(
        ["-xzOf", str(archive_path), member],
        f"Failed to read {member} from {archive_path}",
    )


def extract_archive(archive_path: Path, destination: Path) -> None:
    """Extract *archive_path* over *destination*."""
    destination.mkdir(parents=True, exist_ok=True)
    _run_tar(
        ["-xzf", str(archive_path), "-C", str(destination)],
        "Failed to extract backup archive",
    )


__all__ = ["create_archive", "extract_archive", "read_member"]
