"""Console logging in the application's bracketed-prefix format."""

from __future__ import annotations


def log(prefix: str, message: str) -> None:
    """Print ``message`` to standard output, tagged with ``prefix``."""
    print(f"[{prefix}]: {message}", flush=True)