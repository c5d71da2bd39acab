"""Build progress model shared between the orchestrator and its observers."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

StageStatus = Literal["pending", "in-progress", "completed", "failed"]

STATUS_PENDING: StageStatus = "pending"
STATUS_IN_PROGRESS: StageStatus = "in-progress"
STATUS_COMPLETED: StageStatus = "completed"
STATUS_FAILED: StageStatus = "failed"

STAGE_CHECK = 1
STAGE_DOWNLOAD = 2
STAGE_VERIFY = 3
STAGE_TEMPLATE = 4
STAGE_EXTRACT = 5
STAGE_MODS = 6
STAGE_SCRIPTS = 7
STAGE_ARCHIVE = 8
STAGE_FINALIZE = 9

STAGE_DEFINITIONS: tuple[tuple[int, str, str], ...] = (
    (STAGE_CHECK, "check", "Checking for updates"),
    (STAGE_DOWNLOAD, "download", "Downloading modpack"),
    (STAGE_VERIFY, "verify", "Verifying file integrity"),
    (STAGE_TEMPLATE, "template", "Copying server template"),
    (STAGE_EXTRACT, "extract", "Extracting modpack"),
    (STAGE_MODS, "mods", "Removing client-side mods"),
    (STAGE_SCRIPTS, "scripts", "Creating start scripts"),
    (STAGE_ARCHIVE, "archive", "Creating server archive"),
    (STAGE_FINALIZE, "finalize", "Finalizing"),
)


class BuildPhase(str, Enum):
    """Transform progress events, emitted as each phase completes."""

    WORKSPACE_CLEARED = "workspace_cleared"
    TEMPLATE_COPIED = "template_copied"
    EXTRACTED = "extracted"
    DENYLIST_REMOVED = "denylist_removed"
    SCRIPTS_CREATED = "scripts_created"
    ARCHIVED = "archived"
    WORKSPACE_REMOVED = "workspace_removed"


@dataclass
class BuildStage:
    """One ordered step of the build progress record."""

    id: int
    key: str
    name: str
    status: StageStatus = STATUS_PENDING
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "status": self.status,
            "detail": self.detail,
        }


def _default_stages() -> List[BuildStage]:
    return [BuildStage(id=sid, key=key, name=name) for sid, key, name in STAGE_DEFINITIONS]


@dataclass
class BuildRun:
    """Process-wide progress record; reset in place for every accepted run."""

    running: bool = False
    status_message: str = ""
    target_version: str = ""
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    stages: List[BuildStage] = field(default_factory=_default_stages)

    def reset(self) -> None:
        """Return every stage to ``pending`` and clear run metadata."""
        for stage in self.stages:
            stage.status = STATUS_PENDING
            stage.detail = ""
        self.status_message = ""
        self.target_version = ""
        self.started_at = None
        self.finished_at = None

    def stage(self, stage_id: int) -> BuildStage:
        return self.stages[stage_id - 1]

    def current_stage(self) -> Optional[BuildStage]:
        """Return the stage currently ``in-progress``, if any."""
        for stage in self.stages:
            if stage.status == STATUS_IN_PROGRESS:
                return stage
        return None

    def snapshot(self) -> "BuildRun":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the ``{running, message, stages}`` status shape."""
        return {
            "running": self.running,
            "message": self.status_message,
            "targetVersion": self.target_version,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "stages": [stage.to_dict() for stage in self.stages],
        }


__all__ = [
    "BuildPhase",
    "BuildRun",
    "BuildStage",
    "STAGE_DEFINITIONS",
    "StageStatus",
]
