"""Backup and restore of a node's root directory."""
from __future__ import annotations

import json
import socket
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from . import __version__
from .archive import create_archive, extract_archive, read_member
from .cron import CronManager
from .engine import REQUIRED_CONTAINERS, ReconciliationEngine, ensure_seed_dir
from .errors import BackupError, CommandError
from .node_config import SeedConfig
from .paths import DeployPaths

META_FILE = "backup-meta.json"
BACKUP_DIR_NAME = "backups"
ARCHIVE_PREFIX = "seed-backup-"
ARCHIVE_SUFFIX = ".tar.gz"
BACKUP_ITEMS = ("config.json", META_FILE, "docker-compose.yml", "proxy", "web", "daemon")


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class BackupMetadata:
    """Facts about the node at backup time, embedded in the archive."""

    version: str
    timestamp: str
    hostname: str
    seed_dir: str
    cron_lines: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return the JSON payload."""
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "hostname": self.hostname,
            "seed_dir": self.seed_dir,
            "cron_lines": list(self.cron_lines),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> BackupMetadata:
        """Build metadata from *payload*, tolerating missing fields."""
        raw_lines = payload.get("cron_lines")
        lines: list[str] = []
        if isinstance(raw_lines, list):
            lines = [item for item in raw_lines if isinstance(item, str)]
        return cls(
            version=str(payload.get("version", "")),
            timestamp=str(payload.get("timestamp", "")),
            hostname=str(payload.get("hostname", "")),
            seed_dir=str(payload.get("seed_dir", "")),
            cron_lines=lines,
        )


@dataclass(frozen=True, slots=True)
class BackupResult:
    """Archive produced by :func:`create_backup`."""

    archive: Path
    size_bytes: int
    metadata: BackupMetadata


def backups_dir(paths: DeployPaths) -> Path:
    """Directory holding archives created with default names."""
    return paths.seed_dir / BACKUP_DIR_NAME


def default_archive_path(paths: DeployPaths, now: datetime | None = None) -> Path:
    """Return ``<root>/backups/seed-backup-<UTC timestamp>.tar.gz``."""
    moment = now or datetime.now(tz=UTC)
    stamp = moment.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")
    return backups_dir(paths) / f"{ARCHIVE_PREFIX}{stamp}{ARCHIVE_SUFFIX}"


def latest_archive(paths: DeployPaths) -> Path | None:
    """Return the newest archive in the backups directory, if any."""
    directory = backups_dir(paths)
    if not directory.is_dir():
        return None
    candidates = sorted(
        directory.glob(f"{ARCHIVE_PREFIX}*{ARCHIVE_SUFFIX}"),
        key=lambda item: (item.stat().st_mtime, item.name),
    )
    return candidates[-1] if candidates else None


def format_size(size_bytes: int) -> str:
    """Render *size_bytes* for humans."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _write_metadata(path: Path, metadata: BackupMetadata) -> None:
    try:
        path.write_text(json.dumps(metadata.to_dict(), indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        raise BackupError(f"Failed to write {path}: {exc}") from exc


async def create_backup(
    engine: ReconciliationEngine,
    config: SeedConfig,
    cron: CronManager,
    *,
    archive_path: Path | None = None,
) -> BackupResult:
    """Stop the node, archive its root and start it again.

    Containers are restarted even when archiving fails.
    """
    paths = engine.paths
    target = archive_path or default_archive_path(paths)
    metadata = BackupMetadata(
        version=__version__,
        timestamp=_now_iso(),
        hostname=socket.gethostname(),
        seed_dir=str(paths.seed_dir),
        cron_lines=cron.current_lines(),
    )
    meta_path = paths.seed_dir / META_FILE

    engine.reporter("Stopping containers...")
    try:
        await engine.run_compose(config, "stop")
    except CommandError as exc:
        raise BackupError(f"Failed to stop containers: {exc}") from exc

    try:
        _write_metadata(meta_path, metadata)
        engine.reporter(f"Creating archive {target}...")
        create_archive(paths.seed_dir, target, BACKUP_ITEMS)
    finally:
        meta_path.unlink(missing_ok=True)
        engine.reporter("Starting containers...")
        try:
            await engine.run_compose(config, "start")
        except CommandError as exc:
            engine.reporter(f"Failed to restart containers: {exc}")

    size = target.stat().st_size
    engine.reporter(f"Backup written to {target} ({format_size(size)})")
    return BackupResult(archive=target, size_bytes=size, metadata=metadata)


def read_backup_metadata(archive: Path) -> BackupMetadata:
    """Return the metadata embedded in *archive* without extracting the rest."""
    if not archive.is_file():
        raise BackupError(f"Backup archive not found: {archive}")
    text = read_member(archive, META_FILE)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BackupError(f"Backup metadata corrupted in {archive}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise BackupError(f"Backup metadata in {archive} must be a JSON object.")
    return BackupMetadata.from_dict(payload)


def summarize_metadata(metadata: BackupMetadata, archive: Path) -> str:
    """Render the pre-confirmation summary of a restore."""
    lines = [
        f"  archive: {archive}",
        f"  created: {metadata.timestamp}",
        f"  host: {metadata.hostname}",
        f"  root: {metadata.seed_dir}",
        f"  seedctl: {metadata.version}",
        f"  cron lines: {len(metadata.cron_lines)}",
    ]
    return "\n".join(lines)


def restore_backup(
    engine: ReconciliationEngine,
    cron: CronManager,
    archive: Path,
    metadata: BackupMetadata,
    *,
    containers: Sequence[str] = REQUIRED_CONTAINERS,
) -> None:
    """Replace the live root with *archive* and reinstall its scheduled jobs.

    The caller confirms beforehand and redeploys afterwards.
    """
    paths = engine.paths
    shell = engine.shell
    names = " ".join(containers)
    engine.reporter("Stopping and removing current containers...")
    shell.run_safe(f"docker stop {names} 2>/dev/null")
    shell.run_safe(f"docker rm {names} 2>/dev/null")

    ensure_seed_dir(paths, shell, engine.reporter)
    engine.reporter(f"Extracting {archive} into {paths.seed_dir}...")
    extract_archive(archive, paths.seed_dir)
    (paths.seed_dir / META_FILE).unlink(missing_ok=True)

    if metadata.cron_lines:
        cron.restore(metadata.cron_lines)
        engine.reporter(f"Restored {len(metadata.cron_lines)} scheduled job(s).")


__all__ = [
    "BACKUP_ITEMS",
    "BackupMetadata",
    "BackupResult",
    "META_FILE",
    "backups_dir",
    "create_backup",
    "default_archive_path",
    "format_size",
    "latest_archive",
    "read_backup_metadata",
    "restore_backup",
    "summarize_metadata",
]
