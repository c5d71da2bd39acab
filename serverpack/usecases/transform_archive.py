"""Use case turning a downloaded modpack archive into a server archive.

The transform lays the server template down in a scratch workspace, unpacks
the modpack over it, strips client-only mods, writes launcher scripts and
repackages everything under a single top-level directory. Progress is
reported to an optional observer as each :class:`BuildPhase` completes.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Optional, Sequence

from serverpack.domain.build_state import BuildPhase
from serverpack.domain.errors import BuildStepFailed
from serverpack.domain.ports import ProgressObserver
from serverpack.utils.fs import partial_path, remove_directory, reset_directory
from serverpack.utils.logging import format_megabytes

CLIENT_SIDE_MODS: tuple[str, ...] = (
    "mods/OptiFine_1.7.10_HD_U_E7.jar",
    "mods/ResourceLoader-MC1.7.10-1.3.jar",
    "mods/CustomMainMenu-MC1.7.10-1.9.2.jar",
    "mods/MapWriter-2.1.21-II-Edition.jar",
)
FORGE_JAR = "forge-1.7.10-10.13.4.1614-1.7.10-universal.jar"
JAVA_COMMAND = f"java -Xmx24G -Xms4G -jar {FORGE_JAR} nogui"
ARCHIVE_PREFIX = "minecraft-server"
# Zip entries carry no real mtimes so identical inputs give identical bytes.
_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_COPY_CHUNK = 1024 * 1024


@dataclass(frozen=True)
class TransformResult:
    """Summary of one finished transform."""

    removed: tuple[str, ...]
    file_count: int
    archive_bytes: int

    @property
    def removed_count(self) -> int:
        return len(self.removed)


@dataclass
class TransformArchive:
    """Use-case callable producing the served server archive."""

    workspace_dir: Path
    denylist: Sequence[str] = CLIENT_SIDE_MODS
    prefix: str = ARCHIVE_PREFIX
    logger: Optional[logging.Logger] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.workspace_dir = Path(self.workspace_dir)
        self._log = self.logger or logging.getLogger(__name__)

    def __call__(
        self,
        archive_path: Path,
        template_dir: Path,
        output_path: Path,
        progress: Optional[ProgressObserver] = None,
    ) -> TransformResult:
        workspace = self.workspace_dir
        output_path = Path(output_path)

        def emit(phase: BuildPhase) -> None:
            if progress is not None:
                progress(phase)

        with self._step("clean workspace"):
            self._log.info("Cleaning temp directory...")
            reset_directory(workspace)
        emit(BuildPhase.WORKSPACE_CLEARED)

        with self._step("copy template"):
            self._log.info("Copying server template from %s...", template_dir)
            shutil.copytree(Path(template_dir), workspace, dirs_exist_ok=True)
        emit(BuildPhase.TEMPLATE_COPIED)

        with self._step("extract archive"):
            self._log.info("Extracting modpack...")
            self._extract(Path(archive_path), workspace)
        emit(BuildPhase.EXTRACTED)

        with self._step("remove client-side mods"):
            self._log.info("Removing client-side mods...")
            removed = self._remove_denylisted(workspace)
            self._log.info("Removed %d client-side mods", len(removed))
        emit(BuildPhase.DENYLIST_REMOVED)

        with self._step("create start scripts"):
            self._log.info("Creating start scripts...")
            write_start_scripts(workspace)
        emit(BuildPhase.SCRIPTS_CREATED)

        with self._step("create archive"):
            self._log.info("Creating server archive...")
            file_count = self._write_archive(workspace, output_path)
            archive_bytes = output_path.stat().st_size
        emit(BuildPhase.ARCHIVED)

        # The archive is already in place; a leftover workspace is cleared by
        # the next build or at startup.
        self._log.info("Cleaning up...")
        try:
            remove_directory(workspace)
        except OSError as exc:
            self._log.warning("Could not remove workspace %s: %s", workspace, exc)
        else:
            emit(BuildPhase.WORKSPACE_REMOVED)

        self._log.info(
            "Server archive ready: %s (%d files, %s)",
            output_path,
            file_count,
            format_megabytes(archive_bytes),
        )
        return TransformResult(removed=tuple(removed), file_count=file_count, archive_bytes=archive_bytes)

    @contextmanager
    def _step(self, step: str) -> Iterator[None]:
        try:
            yield
        except BuildStepFailed:
            raise
        except Exception as exc:
            self._log.warning("Build step '%s' failed: %s", step, exc)
            raise BuildStepFailed(step, exc) from exc

    def _extract(self, archive_path: Path, destination: Path) -> None:
        """Extract ZIP over ``destination``; archive files replace template files."""
        destination_root = destination.resolve()
        with zipfile.ZipFile(archive_path, "r") as archive:
            for entry in archive.infolist():
                name = entry.filename.replace("\\", "/")
                if not name:
                    continue
                pure = PurePosixPath(name)
                if pure.is_absolute() or ".." in pure.parts:
                    raise ValueError(f"Unsafe ZIP entry path: {name}")
                unix_mode = entry.external_attr >> 16
                if stat.S_IFMT(unix_mode) == stat.S_IFLNK:
                    raise ValueError(f"ZIP archive contains symlink entry: {name}")
                target_path = (destination / pure.as_posix()).resolve()
                if destination_root not in (target_path, *target_path.parents):
                    raise ValueError(f"ZIP entry escaped extraction directory: {name}")
                if entry.is_dir():
                    target_path.mkdir(parents=True, exist_ok=True)
                    continue
                target_path.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(entry, "r") as source, target_path.open("wb") as handle:
                    shutil.copyfileobj(source, handle, _COPY_CHUNK)
                # Archives built on Windows carry no Unix permissions.
                if stat.S_IMODE(unix_mode):
                    target_path.chmod(stat.S_IMODE(unix_mode))

    def _remove_denylisted(self, workspace: Path) -> List[str]:
        removed: List[str] = []
        for relative in self.denylist:
            candidate = workspace / relative
            if candidate.is_file():
                candidate.unlink()
                self._log.info("  Removed: %s", relative)
                removed.append(relative)
        return removed

    def _write_archive(self, workspace: Path, output_path: Path) -> int:
        """Zip ``workspace`` in sorted order and move it onto ``output_path``."""
        files = sorted(
            (path for path in workspace.rglob("*") if path.is_file()),
            key=lambda item: item.relative_to(workspace).as_posix(),
        )
        output_path.parent.mkdir(parents=True, exist_ok=True)
        incoming = partial_path(output_path)
        try:
            with zipfile.ZipFile(incoming, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                for path in files:
                    info_stat = path.stat()
                    info = zipfile.ZipInfo(
                        f"{self.prefix}/{path.relative_to(workspace).as_posix()}",
                        date_time=_ENTRY_DATE_TIME,
                    )
                    info.compress_type = zipfile.ZIP_DEFLATED
                    info.external_attr = (stat.S_IFREG | stat.S_IMODE(info_stat.st_mode)) << 16
                    info.file_size = info_stat.st_size
                    with path.open("rb") as source, archive.open(info, "w") as target:
                        shutil.copyfileobj(source, target, _COPY_CHUNK)
            os.replace(incoming, output_path)
        finally:
            incoming.unlink(missing_ok=True)
        return len(files)


def write_start_scripts(server_dir: Path) -> tuple[Path, Path]:
    """Write ``start.sh`` (executable) and ``start.bat`` into ``server_dir``."""
    start_sh = server_dir / "start.sh"
    start_bat = server_dir / "start.bat"
    start_sh.write_bytes(f"#!/bin/bash\n{JAVA_COMMAND}\n".encode("utf-8"))
    start_bat.write_bytes(f"@echo off\r\n{JAVA_COMMAND}\r\npause\r\n".encode("utf-8"))
    start_sh.chmod(0o755)
    return start_sh, start_bat


__all__ = [
    "ARCHIVE_PREFIX",
    "CLIENT_SIDE_MODS",
    "FORGE_JAR",
    "TransformArchive",
    "TransformResult",
    "write_start_scripts",
]
