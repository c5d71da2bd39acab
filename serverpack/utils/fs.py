"""Filesystem helpers for scratch directories and atomic file replacement."""

from __future__ import annotations

import os
import shutil
from pathlib import Path


def reset_directory(path: Path) -> None:
    """Delete and recreate a directory path."""
    shutil.rmtree(path, ignore_errors=True)
    path.mkdir(parents=True, exist_ok=True)


def remove_directory(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)


def partial_path(target: Path) -> Path:
    """Return the sibling path used while ``target`` is being written."""
    return target.with_name(target.name + ".partial")


def write_text_atomically(target: Path, text: str) -> None:
    """Write ``text`` next to ``target`` and rename it into place."""
    target.parent.mkdir(parents=True, exist_ok=True)
    incoming = partial_path(target)
    try:
        incoming.write_text(text, encoding="utf-8")
        os.replace(incoming, target)
    finally:
        incoming.unlink(missing_ok=True)
