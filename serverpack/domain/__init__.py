"""Domain package exports for catalog records, build progress and errors."""

from .build_state import BuildPhase, BuildRun, BuildStage
from .catalog import CatalogEntry, VersionProbe, extract_version, select_latest
from .errors import (
    BuildStepFailed,
    CatalogUnavailable,
    DownloadFailed,
    EmptyCatalog,
    HashMismatch,
    IntegrityError,
    LinkResolutionFailed,
    NoMatchingEntry,
    ServerPackError,
    SizeMismatch,
)

__all__ = [
    "BuildPhase",
    "BuildRun",
    "BuildStage",
    "BuildStepFailed",
    "CatalogEntry",
    "CatalogUnavailable",
    "DownloadFailed",
    "EmptyCatalog",
    "HashMismatch",
    "IntegrityError",
    "LinkResolutionFailed",
    "NoMatchingEntry",
    "ServerPackError",
    "SizeMismatch",
    "VersionProbe",
    "extract_version",
    "select_latest",
]
