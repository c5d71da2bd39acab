"""Server-build orchestration for the REST API.

This module sequences the catalog download and the archive transform,
keeps the single process-wide :class:`BuildRun` progress record and makes
sure at most one build runs at a time. Builds execute on a daemon thread;
observers read deep-copied snapshots of the record under the same lock that
guards every mutation.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from serverpack.domain.build_state import (
    STAGE_ARCHIVE,
    STAGE_CHECK,
    STAGE_DOWNLOAD,
    STAGE_EXTRACT,
    STAGE_FINALIZE,
    STAGE_MODS,
    STAGE_SCRIPTS,
    STAGE_TEMPLATE,
    STAGE_VERIFY,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    BuildPhase,
    BuildRun,
)
from serverpack.domain.catalog import VersionProbe
from serverpack.domain.errors import ServerPackError
from serverpack.domain.ports import CatalogPort, TransformPort
from serverpack.utils.integrity import VerifyOptions
from serverpack.utils.logging import format_megabytes

from rest_api.storage import ArtifactStore

VERIFY_PAUSE_S = 0.5

# Stage each transform phase moves the record to; ``None`` leaves it unchanged.
PHASE_STAGE_TARGETS: Dict[BuildPhase, Optional[int]] = {
    BuildPhase.WORKSPACE_CLEARED: None,
    BuildPhase.TEMPLATE_COPIED: STAGE_EXTRACT,
    BuildPhase.EXTRACTED: STAGE_MODS,
    BuildPhase.DENYLIST_REMOVED: STAGE_SCRIPTS,
    BuildPhase.SCRIPTS_CREATED: STAGE_ARCHIVE,
    BuildPhase.ARCHIVED: STAGE_FINALIZE,
    BuildPhase.WORKSPACE_REMOVED: None,
}


def _utcnow_iso() -> str:
    """Return ISO UTC timestamp used in build status payloads."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class BuildOrchestrator:
    """Run check -> download -> transform -> finalize with one build slot."""

    def __init__(
        self,
        *,
        catalog: CatalogPort,
        transform: TransformPort,
        store: ArtifactStore,
        template_dir: Path,
        verify_pause_s: float = VERIFY_PAUSE_S,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._catalog = catalog
        self._transform = transform
        self._store = store
        self._template_dir = Path(template_dir)
        self._verify_pause_s = max(0.0, float(verify_pause_s))
        self._log = logger or logging.getLogger("rest_api.build")

        self._run = BuildRun()
        self._version_saved = False
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def store(self) -> ArtifactStore:
        return self._store

    def check_for_update(self, current_version: str) -> VersionProbe:
        """Probe the catalog; failures propagate so callers can fall back."""
        try:
            return self._catalog.probe_update(current_version)
        except ServerPackError as exc:
            self._log.warning("Error checking for update: %s", exc.message)
            raise

    def request_build(self, probe: VersionProbe) -> bool:
        """Start a background build unless one is already running.

        Returns ``True`` when this call started the build and ``False`` when
        it joined one already in flight.
        """
        with self._lock:
            if self._run.running:
                return False
            self._run.reset()
            self._run.running = True
            self._run.stage(STAGE_CHECK).status = STATUS_COMPLETED
            self._run.target_version = probe.latest_version
            self._run.started_at = _utcnow_iso()
            self._run.status_message = "Starting build process..."
            self._version_saved = False
            self._idle.clear()

        self._log.info("Starting build for new version: %s", probe.latest_version)
        worker = threading.Thread(
            target=self._run_build,
            args=(probe,),
            name=f"server-build-{probe.latest_version}",
            daemon=True,
        )
        try:
            worker.start()
        except Exception:
            self._release_slot()
            raise
        return True

    def status_snapshot(self) -> BuildRun:
        """Return a deep copy of the progress record."""
        with self._lock:
            return self._run.snapshot()

    def current_status(self) -> Dict[str, Any]:
        return self.status_snapshot().to_dict()

    def is_running(self) -> bool:
        with self._lock:
            return self._run.running

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no build runs; return ``False`` on timeout."""
        return self._idle.wait(timeout)

    def cleanup_orphaned_files(self) -> List[Path]:
        """Remove files left by an interrupted build; no build can start meanwhile."""
        with self._lock:
            if self._run.running:
                return []
            return self._store.cleanup_orphaned_files()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------
    def _run_build(self, probe: VersionProbe) -> None:
        """Background worker; failures end up in the progress record only."""
        with self._build_slot():
            try:
                self._execute(probe)
            except ServerPackError as exc:
                self._log.warning("Build failed: %s (%s)", exc.message, exc.code)
                self._record_failure(exc.message)
            except Exception as exc:
                self._log.exception("Unexpected build failure version=%s", probe.latest_version)
                self._record_failure(str(exc) or type(exc).__name__)

    def _execute(self, probe: VersionProbe) -> None:
        download_path = self._store.download_path
        source = probe.source

        self._advance(STAGE_DOWNLOAD, "Downloading modpack from Yandex.Disk...")
        downloaded = self._catalog.download(
            source.remote_path,
            download_path,
            VerifyOptions(
                expected_size=source.size_bytes or None,
                expected_md5=source.checksum,
            ),
        )
        self._set_detail(STAGE_DOWNLOAD, format_megabytes(int(downloaded or 0)))

        # Verification already ran inside download(); the stage stays visible briefly.
        self._advance(STAGE_VERIFY, "Verifying file integrity...")
        if self._verify_pause_s:
            time.sleep(self._verify_pause_s)

        self._advance(STAGE_TEMPLATE, "Building server...")
        self._transform(
            download_path,
            self._template_dir,
            self._store.archive_path,
            self._on_phase,
        )

        self._advance(STAGE_FINALIZE, "Finalizing...")
        self._persist_version()
        self._complete_through(STAGE_FINALIZE, "Build completed!")
        self._log.info("Build completed successfully: %s", probe.latest_version)

    @contextmanager
    def _build_slot(self) -> Iterator[None]:
        """Hold the build slot; always drop the temp download and release."""
        try:
            yield
        finally:
            try:
                if self._store.remove_download():
                    self._log.info("Cleaned up temporary modpack file")
            except OSError as exc:
                self._log.warning("Could not delete temp file: %s", exc)
            self._release_slot()

    def _release_slot(self) -> None:
        with self._lock:
            self._run.running = False
            self._run.finished_at = _utcnow_iso()
        self._idle.set()

    # ------------------------------------------------------------------
    # Internal state helpers
    # ------------------------------------------------------------------
    def _on_phase(self, phase: BuildPhase) -> None:
        target = PHASE_STAGE_TARGETS[phase]
        if target is not None:
            self._advance(target)
        if phase is BuildPhase.ARCHIVED:
            self._persist_version()

    def _persist_version(self) -> None:
        """Write the version token once, right after the new archive lands."""
        with self._lock:
            if self._version_saved:
                return
            version = self._run.target_version
        self._store.save_current_version(version)
        with self._lock:
            self._version_saved = True

    def _advance(self, stage_id: int, message: Optional[str] = None) -> None:
        """Complete every earlier open stage and mark ``stage_id`` in progress."""
        with self._lock:
            for stage in self._run.stages[: stage_id - 1]:
                if stage.status in (STATUS_PENDING, STATUS_IN_PROGRESS):
                    stage.status = STATUS_COMPLETED
            target = self._run.stage(stage_id)
            if target.status == STATUS_PENDING:
                target.status = STATUS_IN_PROGRESS
            if message is not None:
                self._run.status_message = message

    def _complete_through(self, stage_id: int, message: str) -> None:
        with self._lock:
            for stage in self._run.stages[:stage_id]:
                if stage.status in (STATUS_PENDING, STATUS_IN_PROGRESS):
                    stage.status = STATUS_COMPLETED
            self._run.status_message = message

    def _set_detail(self, stage_id: int, detail: str) -> None:
        with self._lock:
            self._run.stage(stage_id).detail = detail

    def _record_failure(self, message: str) -> None:
        """Mark the in-progress stage failed and publish the failure summary."""
        with self._lock:
            current = self._run.current_stage()
            if current is not None:
                current.status = STATUS_FAILED
                current.detail = message
            self._run.status_message = f"Build failed: {message}"


__all__ = ["BuildOrchestrator", "PHASE_STAGE_TARGETS", "VERIFY_PAUSE_S"]
