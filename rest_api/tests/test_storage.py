from pathlib import Path

from rest_api.storage import ArtifactStore


def test_version_round_trip(tmp_path: Path):
    store = ArtifactStore(tmp_path / "storage")
    assert store.current_version() is None

    store.save_current_version("v1.09.3")

    assert store.current_version() == "v1.09.3"
    assert store.version_path.read_text(encoding="utf-8") == "v1.09.3"
    assert not store.version_path.with_name("current.txt.partial").exists()


def test_blank_version_file_reads_as_missing(tmp_path: Path):
    store = ArtifactStore(tmp_path)
    store.version_path.write_text("  \n", encoding="utf-8")
    assert store.current_version() is None


def test_has_built_server_tracks_archive(tmp_path: Path):
    store = ArtifactStore(tmp_path)
    assert store.has_built_server() is False

    store.archive_path.write_bytes(b"x" * (3 * 1024 * 1024))

    assert store.has_built_server() is True
    assert store.archive_size_label() == "3.00 MB"


def test_remove_download_reports_whether_file_existed(tmp_path: Path):
    store = ArtifactStore(tmp_path)
    assert store.remove_download() is False
    store.download_path.write_bytes(b"partial")
    assert store.remove_download() is True
    assert not store.download_path.exists()


def test_cleanup_orphaned_files_keeps_served_build(tmp_path: Path):
    store = ArtifactStore(tmp_path)
    store.save_current_version("v1")
    store.archive_path.write_bytes(b"served")
    store.download_path.write_bytes(b"half")
    store.archive_path.with_name("latest.zip.partial").write_bytes(b"half")
    (store.workspace_dir / "mods").mkdir(parents=True)

    removed = store.cleanup_orphaned_files()

    assert store.download_path in removed
    assert store.workspace_dir in removed
    assert len(removed) == 3
    assert not store.workspace_dir.exists()
    assert store.archive_path.read_bytes() == b"served"
    assert store.current_version() == "v1"
    assert store.cleanup_orphaned_files() == []
