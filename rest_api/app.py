"""HTTP glue for the server builder: status JSON, build trigger and download."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List, Literal, Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel

from serverpack import __version__
from serverpack.adapters.yandex_disk import YandexDiskCatalog
from serverpack.domain.errors import ServerPackError
from serverpack.usecases.transform_archive import TransformArchive
from serverpack.utils.logging import configure_root

from rest_api.build_manager import BuildOrchestrator
from rest_api.settings import Settings
from rest_api.storage import ArtifactStore

LOG = logging.getLogger("rest_api.app")

SETTINGS = Settings.from_env()
STORE = ArtifactStore(SETTINGS.storage_root)
CATALOG = YandexDiskCatalog(SETTINGS.disk_url, api_base=SETTINGS.api_base, cfg=SETTINGS.http)
BUILD_MANAGER = BuildOrchestrator(
    catalog=CATALOG,
    transform=TransformArchive(STORE.workspace_dir),
    store=STORE,
    template_dir=SETTINGS.template_dir,
)


# ---------- Response models ----------
class BuildStageModel(BaseModel):
    id: int
    key: str
    name: str
    status: Literal["pending", "in-progress", "completed", "failed"]
    detail: str = ""


class BuildStatusModel(BaseModel):
    running: bool
    message: str
    targetVersion: str = ""
    startedAt: Optional[str] = None
    finishedAt: Optional[str] = None
    stages: List[BuildStageModel]


class VersionInfoModel(BaseModel):
    currentVersion: str
    hasBuiltServer: bool
    latestVersion: str
    updateAvailable: bool
    buildInProgress: bool
    buildProgress: str
    buildSteps: List[BuildStageModel]


class BuildingModel(BaseModel):
    latestVersion: str
    accepted: bool
    status: BuildStatusModel


# ---------- Startup ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_root()
    manager = BUILD_MANAGER
    manager.cleanup_orphaned_files()
    LOG.info("Server builder API %s listening on port %s", __version__, SETTINGS.port)
    LOG.info("Current version: %s", manager.store.current_version() or "none")
    yield


app = FastAPI(title="Modpack Server Builder", version=__version__, lifespan=lifespan)


@app.exception_handler(ServerPackError)
async def server_pack_error_handler(request: Request, exc: ServerPackError) -> JSONResponse:
    LOG.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=503, content=exc.to_dict())


def _serve_archive(manager: BuildOrchestrator) -> FileResponse:
    store = manager.store
    version = store.current_version() or "unknown"
    LOG.info("Serving server: %s (%s)", version, store.archive_size_label())
    return FileResponse(
        store.archive_path,
        media_type="application/zip",
        filename=f"IIS-Server-{version}.zip",
    )


def _redirect(path: str) -> RedirectResponse:
    return RedirectResponse(path, status_code=302)


# ---------- Routes ----------
@app.get("/health")
def health():
    return {"status": "ok", "version": BUILD_MANAGER.store.current_version() or "none"}


@app.get("/status", response_model=BuildStatusModel)
def build_status():
    """Return the latest snapshot of the build progress record."""
    return BUILD_MANAGER.current_status()


@app.get("/version", response_model=VersionInfoModel)
def version_info():
    manager = BUILD_MANAGER
    current = manager.store.current_version()
    latest: Optional[str] = None
    update_available = False
    try:
        probe = manager.check_for_update(current or "none")
        latest = probe.latest_version
        update_available = probe.has_update
    except ServerPackError as exc:
        LOG.warning("Could not check for updates: %s", exc.message)

    snapshot = manager.status_snapshot()
    return {
        "currentVersion": current or "none",
        "hasBuiltServer": manager.store.has_built_server(),
        "latestVersion": latest or "unknown",
        "updateAvailable": update_available,
        "buildInProgress": snapshot.running,
        "buildProgress": snapshot.status_message,
        "buildSteps": [stage.to_dict() for stage in snapshot.stages],
    }


@app.get("/building", response_model=None)
def building() -> Union[BuildingModel, RedirectResponse]:
    """Start (or join) a build when the served archive is missing or stale."""
    manager = BUILD_MANAGER
    current = manager.store.current_version()
    has_server = manager.store.has_built_server()
    try:
        probe = manager.check_for_update(current or "none")
    except ServerPackError:
        if has_server:
            LOG.warning("Cannot check for updates, redirecting to download")
            return _redirect("/download")
        raise

    if not probe.has_update and has_server:
        LOG.info("Server ready, redirecting to download (%s)", current)
        return _redirect("/download")

    accepted = manager.request_build(probe)
    return BuildingModel(
        latestVersion=probe.latest_version,
        accepted=accepted,
        status=BuildStatusModel(**manager.current_status()),
    )


@app.get("/download", response_model=None)
def download() -> Union[FileResponse, RedirectResponse]:
    manager = BUILD_MANAGER
    if manager.is_running():
        return _redirect("/building")

    current = manager.store.current_version()
    has_server = manager.store.has_built_server()
    try:
        probe = manager.check_for_update(current or "none")
    except ServerPackError:
        if has_server:
            LOG.warning("Cannot check for updates, serving existing server")
            return _serve_archive(manager)
        return _redirect("/building")

    if not has_server or probe.has_update:
        return _redirect("/building")
    return _serve_archive(manager)


def main() -> None:
    import uvicorn

    configure_root()
    uvicorn.run(app, host=SETTINGS.host, port=SETTINGS.port)
