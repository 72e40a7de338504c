"""Replace the local deploy script with the latest published build.

Unattended runs call :func:`self_update` before deploying. The new script
only takes effect on the next invocation, and no failure here may stop the
deployment that follows.
"""
from __future__ import annotations

import os
import stat
import tempfile
from collections.abc import Callable
from pathlib import Path

from .errors import FetchError
from .fetch import Fetcher
from .hashing import sha256_bytes, sha256_file
from .logging import progress


def _replace_atomically(target: Path, content: bytes) -> None:
    try:
        mode = stat.S_IMODE(target.stat().st_mode)
    except FileNotFoundError:
        mode = 0o755
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "wb") as handle:
            handle.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, target)
    finally:
        tmp_path.unlink(missing_ok=True)


async def self_update(
    script_path: Path,
    url: str,
    fetcher: Fetcher,
    *,
    reporter: Callable[[str], None] = progress,
) -> bool:
    """Overwrite *script_path* with the body of *url* when their digests differ.

    Returns True when the file was replaced. Fetch and filesystem errors are
    reported and swallowed.
    """
    try:
        latest = await fetcher.fetch_bytes(url)
    except FetchError as exc:
        reporter(f"Self-update check failed: {exc}")
        return False
    try:
        current = sha256_file(script_path)
    except FileNotFoundError:
        current = ""
    except OSError as exc:
        reporter(f"Self-update skipped, cannot read {script_path}: {exc}")
        return False
    if current == sha256_bytes(latest):
        reporter("Deploy script is up to date.")
        return False
    try:
        _replace_atomically(script_path, latest)
    except OSError as exc:
        reporter(f"Self-update failed to write {script_path}: {exc}")
        return False
    reporter("Deploy script updated; the new version applies on the next run.")
    return True


__all__ = ["self_update"]
