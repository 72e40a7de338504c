"""Built-in static templates shipped with seedctl."""
from __future__ import annotations

from functools import cache
from importlib import resources

CADDYFILE = "Caddyfile"


@cache
def load_template(name: str) -> str:
    """Return the raw text of the packaged template *name*."""
    try:
        return resources.files(__name__).joinpath(name).read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise KeyError(f"Unknown template: {name}") from exc


__all__ = ["CADDYFILE", "load_template"]
