"""Digest and secret helpers."""
from __future__ import annotations

import hashlib
import secrets
import string
from pathlib import Path

SECRET_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits


def sha256(content: str) -> str:
    """Return the hex SHA-256 digest of *content* encoded as UTF-8."""
    return sha256_bytes(content.encode("utf-8"))


def sha256_bytes(content: bytes) -> str:
    """Return the hex SHA-256 digest of *content*."""
    return hashlib.sha256(content).hexdigest()


def sha256_file(path: Path) -> str:
    """Return the SHA-256 checksum for the file at *path*."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def generate_secret(length: int = 10) -> str:
    """Return a random alphanumeric string of *length* characters."""
    if length < 0:
        raise ValueError("Secret length must be non-negative.")
    return "".join(secrets.choice(SECRET_ALPHABET) for _ in range(length))


__all__ = ["SECRET_ALPHABET", "generate_secret", "sha256", "sha256_bytes", "sha256_file"]
