"""Orchestrator tests driving the build worker with in-memory collaborators."""

from __future__ import annotations

import threading
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import pytest

from serverpack.domain.build_state import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    BuildPhase,
)
from serverpack.domain.catalog import CatalogEntry, VersionProbe
from serverpack.domain.errors import DownloadFailed, SizeMismatch
from serverpack.usecases import transform_archive
from serverpack.usecases.transform_archive import TransformArchive
from serverpack.utils.integrity import VerifyOptions

from rest_api.build_manager import PHASE_STAGE_TARGETS, BuildOrchestrator
from rest_api.storage import ArtifactStore


def _probe(version: str = "v1.09.4", *, size: int = 7, checksum: Optional[str] = "abc") -> VersionProbe:
    entry = CatalogEntry(
        name=f"IIS-{version}.zip",
        remote_path=f"/IIS-{version}.zip",
        modified_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
        size_bytes=size,
        checksum=checksum,
    )
    return VersionProbe(has_update=True, latest_version=version, source=entry)


class _FakeCatalog:
    def __init__(self, *, error: Optional[Exception] = None, gate: Optional[threading.Event] = None) -> None:
        self.error = error
        self.gate = gate
        self.payload = b"modpack"
        self.started = threading.Event()
        self.downloads: List[tuple] = []

    def probe_update(self, current_version: str) -> VersionProbe:
        return _probe()

    def download(self, remote_path: str, dest_path: Path, options: Optional[VerifyOptions] = None) -> int:
        self.downloads.append((remote_path, Path(dest_path), options))
        self.started.set()
        if self.gate is not None:
            assert self.gate.wait(5)
        Path(dest_path).write_bytes(self.payload)
        if self.error is not None:
            raise self.error
        return 7


class _FakeTransform:
    def __init__(self, *, fail_after: Optional[BuildPhase] = None) -> None:
        self.fail_after = fail_after
        self.snapshots: List[list] = []
        self.manager: Optional[BuildOrchestrator] = None

    def __call__(self, archive_path, template_dir, output_path, progress=None):
        for phase in BuildPhase:
            if phase is BuildPhase.ARCHIVED:
                Path(output_path).write_bytes(b"server")
            if progress is not None:
                progress(phase)
            if self.manager is not None:
                self.snapshots.append([stage.status for stage in self.manager.status_snapshot().stages])
            if phase == self.fail_after:
                raise RuntimeError("disk full")


def _manager(tmp_path: Path, catalog, transform) -> BuildOrchestrator:
    manager = BuildOrchestrator(
        catalog=catalog,
        transform=transform,
        store=ArtifactStore(tmp_path / "storage"),
        template_dir=tmp_path / "forge-clean",
        verify_pause_s=0,
    )
    if isinstance(transform, _FakeTransform):
        transform.manager = manager
    return manager


def test_successful_build_completes_every_stage(tmp_path: Path):
    catalog = _FakeCatalog()
    manager = _manager(tmp_path, catalog, _FakeTransform())

    assert manager.request_build(_probe()) is True
    assert manager.wait_until_idle(5)

    status = manager.current_status()
    assert status["running"] is False
    assert status["message"] == "Build completed!"
    assert status["targetVersion"] == "v1.09.4"
    assert status["finishedAt"] is not None
    assert [stage["status"] for stage in status["stages"]] == [STATUS_COMPLETED] * 9
    assert status["stages"][1]["detail"] == "0.00 MB"
    assert manager.store.current_version() == "v1.09.4"
    assert not manager.store.download_path.exists()

    remote_path, dest_path, options = catalog.downloads[0]
    assert remote_path == "/IIS-v1.09.4.zip"
    assert dest_path == manager.store.download_path
    assert options == VerifyOptions(expected_size=7, expected_md5="abc")


def test_zero_size_disables_size_check(tmp_path: Path):
    catalog = _FakeCatalog()
    manager = _manager(tmp_path, catalog, _FakeTransform())

    manager.request_build(_probe(size=0, checksum=None))
    assert manager.wait_until_idle(5)

    assert catalog.downloads[0][2] == VerifyOptions()


def test_transform_phases_keep_a_single_stage_in_progress(tmp_path: Path):
    transform = _FakeTransform()
    manager = _manager(tmp_path, _FakeCatalog(), transform)

    manager.request_build(_probe())
    assert manager.wait_until_idle(5)

    assert transform.snapshots
    for statuses in transform.snapshots:
        assert statuses.count(STATUS_IN_PROGRESS) <= 1
        first_open = next(
            (i for i, status in enumerate(statuses) if status != STATUS_COMPLETED),
            len(statuses),
        )
        assert all(status == STATUS_COMPLETED for status in statuses[:first_open])
        assert all(status == STATUS_PENDING for status in statuses[first_open + 1 :])
    # After the archive phase the record sits on the finalize stage.
    archived = transform.snapshots[list(BuildPhase).index(BuildPhase.ARCHIVED)]
    assert archived[8] == STATUS_IN_PROGRESS


def test_concurrent_requests_start_one_build(tmp_path: Path):
    gate = threading.Event()
    catalog = _FakeCatalog(gate=gate)
    manager = _manager(tmp_path, catalog, _FakeTransform())
    results: List[bool] = []

    def _request() -> None:
        results.append(manager.request_build(_probe()))

    threads = [threading.Thread(target=_request) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert catalog.started.wait(5)
    assert sorted(results) == [False, True]
    assert manager.is_running() is True
    assert manager.request_build(_probe()) is False

    gate.set()
    assert manager.wait_until_idle(5)
    assert len(catalog.downloads) == 1
    assert manager.is_running() is False


def test_download_failure_marks_stage_failed(tmp_path: Path):
    manager = _manager(tmp_path, _FakeCatalog(error=DownloadFailed("Download failed: reset")), _FakeTransform())

    manager.request_build(_probe())
    assert manager.wait_until_idle(5)

    status = manager.current_status()
    assert status["running"] is False
    assert status["message"] == "Build failed: Download failed: reset"
    stages = status["stages"]
    assert stages[0]["status"] == STATUS_COMPLETED
    assert stages[1]["status"] == STATUS_FAILED
    assert stages[1]["detail"] == "Download failed: reset"
    assert all(stage["status"] == STATUS_PENDING for stage in stages[2:])
    assert manager.store.current_version() is None
    assert not manager.store.download_path.exists()


def test_integrity_failure_reports_mismatch(tmp_path: Path):
    manager = _manager(tmp_path, _FakeCatalog(error=SizeMismatch(100, 99)), _FakeTransform())

    manager.request_build(_probe())
    assert manager.wait_until_idle(5)

    status = manager.current_status()
    assert "File size mismatch" in status["message"]
    assert status["stages"][1]["status"] == STATUS_FAILED


def test_unexpected_transform_error_is_recorded(tmp_path: Path):
    manager = _manager(tmp_path, _FakeCatalog(), _FakeTransform(fail_after=BuildPhase.EXTRACTED))

    manager.request_build(_probe())
    assert manager.wait_until_idle(5)

    status = manager.current_status()
    assert status["message"] == "Build failed: disk full"
    failed = [stage for stage in status["stages"] if stage["status"] == STATUS_FAILED]
    assert [stage["key"] for stage in failed] == ["mods"]
    assert manager.is_running() is False
    assert manager.store.current_version() is None


def test_version_is_saved_as_soon_as_archive_is_written(tmp_path: Path):
    manager = _manager(tmp_path, _FakeCatalog(), _FakeTransform(fail_after=BuildPhase.ARCHIVED))
    manager.store.archive_path.write_bytes(b"old-server")
    manager.store.save_current_version("v1")

    manager.request_build(_probe())
    assert manager.wait_until_idle(5)

    assert manager.current_status()["message"] == "Build failed: disk full"
    assert manager.store.archive_path.read_bytes() == b"server"
    assert manager.store.current_version() == "v1.09.4"


def test_workspace_cleanup_failure_keeps_archive_and_version_paired(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
):
    template = tmp_path / "forge-clean"
    template.mkdir()
    (template / "server.properties").write_text("motd=test\n", encoding="utf-8")
    modpack = tmp_path / "modpack.zip"
    with zipfile.ZipFile(modpack, "w") as archive:
        archive.writestr("mods/IndustrialCraft.jar", b"ic2")

    def _busy(path):
        raise OSError("busy")

    monkeypatch.setattr(transform_archive, "remove_directory", _busy)
    catalog = _FakeCatalog()
    catalog.payload = modpack.read_bytes()
    manager = _manager(tmp_path, catalog, TransformArchive(tmp_path / "storage" / "temp"))
    store = manager.store
    store.archive_path.write_bytes(b"old-server")
    store.save_current_version("v1")

    manager.request_build(_probe("v2"))
    assert manager.wait_until_idle(5)

    assert manager.current_status()["message"] == "Build completed!"
    assert store.current_version() == "v2"
    with zipfile.ZipFile(store.archive_path) as archive:
        assert "minecraft-server/mods/IndustrialCraft.jar" in archive.namelist()


def test_failed_build_can_be_retried(tmp_path: Path):
    catalog = _FakeCatalog(error=DownloadFailed("boom"))
    manager = _manager(tmp_path, catalog, _FakeTransform())
    manager.request_build(_probe())
    assert manager.wait_until_idle(5)

    catalog.error = None
    assert manager.request_build(_probe()) is True
    assert manager.wait_until_idle(5)
    assert manager.current_status()["message"] == "Build completed!"


def test_snapshots_are_isolated_from_the_record(tmp_path: Path):
    manager = _manager(tmp_path, _FakeCatalog(), _FakeTransform())
    snapshot = manager.status_snapshot()
    snapshot.stages[0].status = STATUS_FAILED

    assert manager.status_snapshot().stages[0].status == STATUS_PENDING


def test_cleanup_is_skipped_while_building(tmp_path: Path):
    gate = threading.Event()
    catalog = _FakeCatalog(gate=gate)
    manager = _manager(tmp_path, catalog, _FakeTransform())
    manager.store.workspace_dir.mkdir(parents=True)

    manager.request_build(_probe())
    assert catalog.started.wait(5)
    assert manager.cleanup_orphaned_files() == []
    assert manager.store.workspace_dir.exists()

    gate.set()
    assert manager.wait_until_idle(5)


@pytest.mark.parametrize("phase", list(BuildPhase))
def test_every_phase_has_a_stage_mapping(phase: BuildPhase):
    assert phase in PHASE_STAGE_TARGETS


def test_build_cannot_start_during_orphan_cleanup(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    manager = _manager(tmp_path, _FakeCatalog(), _FakeTransform())
    remove_orphans = manager.store.cleanup_orphaned_files
    seen = {}

    def _cleanup():
        requester = threading.Thread(target=manager.request_build, args=(_probe(),))
        requester.start()
        requester.join(0.2)
        seen["blocked"] = requester.is_alive()
        seen["requester"] = requester
        return remove_orphans()

    monkeypatch.setattr(manager.store, "cleanup_orphaned_files", _cleanup)

    manager.cleanup_orphaned_files()
    seen["requester"].join(5)

    assert seen["blocked"] is True
    assert manager.wait_until_idle(5)
    assert manager.current_status()["message"] == "Build completed!"
