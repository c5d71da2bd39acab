"""Filesystem layout of the served build and its scratch files.

`rest_api.app` and `rest_api.build_manager` share this store. It owns:

- the persisted version token (`current.txt`),
- the served archive (`latest.zip`),
- the temporary modpack download (`modpack-temp.zip`), and
- the scratch workspace (`temp/`).

The version file and the archive are the only state that survives process
restarts; both are replaced with atomic renames so readers see either the
previous or the new content.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from serverpack.utils.fs import partial_path, remove_directory, write_text_atomically
from serverpack.utils.logging import format_megabytes

VERSION_FILE_NAME = "current.txt"
ARCHIVE_FILE_NAME = "latest.zip"
DOWNLOAD_FILE_NAME = "modpack-temp.zip"
WORKSPACE_DIR_NAME = "temp"


class ArtifactStore:
    """Paths and persisted state under one storage root."""

    def __init__(self, root: Path, *, logger: Optional[logging.Logger] = None) -> None:
        self.root = Path(root)
        self.version_path = self.root / VERSION_FILE_NAME
        self.archive_path = self.root / ARCHIVE_FILE_NAME
        self.download_path = self.root / DOWNLOAD_FILE_NAME
        self.workspace_dir = self.root / WORKSPACE_DIR_NAME
        self._log = logger or logging.getLogger("rest_api.storage")
        self.root.mkdir(parents=True, exist_ok=True)

    def current_version(self) -> Optional[str]:
        """Return the version of the served build, or `None` when absent/empty."""
        if not self.version_path.is_file():
            return None
        version = self.version_path.read_text(encoding="utf-8").strip()
        return version or None

    def save_current_version(self, version: str) -> None:
        write_text_atomically(self.version_path, str(version))

    def has_built_server(self) -> bool:
        return self.archive_path.is_file()

    def archive_size_label(self) -> str:
        return format_megabytes(self.archive_path.stat().st_size)

    def remove_download(self) -> bool:
        """Delete the temporary modpack download; return whether it existed."""
        if not self.download_path.exists():
            return False
        self.download_path.unlink()
        return True

    def cleanup_orphaned_files(self) -> List[Path]:
        """Remove leftovers of builds interrupted by a crash or restart.

        Returns
        -------
        List[Path]
            Paths that were deleted.
        """
        removed: List[Path] = []
        for candidate in (
            self.download_path,
            partial_path(self.archive_path),
            partial_path(self.version_path),
        ):
            if candidate.is_file():
                candidate.unlink()
                removed.append(candidate)
        if self.workspace_dir.exists():
            remove_directory(self.workspace_dir)
            removed.append(self.workspace_dir)
        for path in removed:
            self._log.info("Cleaned up orphaned file: %s", path)
        return removed
