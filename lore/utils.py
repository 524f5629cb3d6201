"""Filesystem helpers for lore."""

import os
from pathlib import Path


def get_lore_home() -> Path:
    """Return the lore data directory.

    Honors ``LORE_DATA_DIR``; defaults to ``~/.lore``.
    """
    override = os.environ.get("LORE_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".lore"
