"""Catalog entries, version extraction and latest-modpack selection."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from .errors import CatalogUnavailable, NoMatchingEntry

ARCHIVE_EXTENSION = ".zip"
NAME_MARKERS: tuple[str, ...] = ("iis", "иис")
VERSION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"IIS[-_\s]*(v[\d.]+)\.zip", re.IGNORECASE),
    re.compile(r"ИИС[-_\s]*(v[\d.]+)\.zip", re.IGNORECASE),
)
_EXTENSION_RE = re.compile(r"\.zip$", re.IGNORECASE)


def extract_version(filename: str) -> str:
    """Return the ``vX.Y.Z`` token of a modpack filename.

    Supports ``IIS-v1.09.3.zip``, ``IIS v1.09.3.zip`` and ``ИИС v1.19.1.zip``.
    Unknown shapes fall back to the filename without its extension, so the
    result is always usable for equality checks.
    """
    for pattern in VERSION_PATTERNS:
        match = pattern.search(filename)
        if match:
            return match.group(1)
    return _EXTENSION_RE.sub("", filename)


def is_modpack_name(name: str) -> bool:
    """Return whether a filename carries a modpack marker and archive extension."""
    lowered = str(name or "").lower()
    if not lowered.endswith(ARCHIVE_EXTENSION):
        return False
    return any(marker in lowered for marker in NAME_MARKERS)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 catalog timestamp into an aware UTC datetime."""
    text = str(value or "").strip()
    if not text:
        raise ValueError("empty timestamp")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class CatalogEntry:
    """One file reported by the remote public folder."""

    name: str
    remote_path: str
    modified_at: datetime
    size_bytes: int = 0
    checksum: Optional[str] = None
    sha256: Optional[str] = None

    @property
    def version(self) -> str:
        return extract_version(self.name)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CatalogEntry":
        """Build an entry from one ``_embedded.items`` record."""
        name = str(payload.get("name") or "").strip()
        if not name:
            raise CatalogUnavailable("Catalog item without a name", hint=str(dict(payload)))
        try:
            modified_at = parse_timestamp(payload.get("modified"))
        except ValueError as exc:
            raise CatalogUnavailable(
                f"Catalog item '{name}' has an invalid modification time",
                hint=str(exc),
            ) from exc
        try:
            size_bytes = max(0, int(payload.get("size") or 0))
        except (TypeError, ValueError) as exc:
            raise CatalogUnavailable(
                f"Catalog item '{name}' has an invalid size",
                hint=str(exc),
            ) from exc
        return cls(
            name=name,
            remote_path=str(payload.get("path") or "/" + name),
            modified_at=modified_at,
            size_bytes=size_bytes,
            checksum=str(payload.get("md5") or "").strip().lower() or None,
            sha256=str(payload.get("sha256") or "").strip().lower() or None,
        )


@dataclass(frozen=True)
class VersionProbe:
    """Outcome of comparing the served version with the newest remote modpack."""

    has_update: bool
    latest_version: str
    source: CatalogEntry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasUpdate": self.has_update,
            "latestVersion": self.latest_version,
            "filePath": self.source.remote_path,
            "fileName": self.source.name,
            "checksum": self.source.checksum,
            "sizeBytes": self.source.size_bytes,
        }


def select_latest(entries: Iterable[CatalogEntry]) -> CatalogEntry:
    """Return the most recently modified modpack archive.

    Ties keep the first entry seen.
    """
    latest: Optional[CatalogEntry] = None
    for entry in entries:
        if not is_modpack_name(entry.name):
            continue
        if latest is None or entry.modified_at > latest.modified_at:
            latest = entry
    if latest is None:
        raise NoMatchingEntry(
            "No modpack files found in the public folder",
            hint="Expected a .zip whose name contains 'IIS' or 'ИИС'.",
        )
    return latest


def probe_from_entries(entries: Iterable[CatalogEntry], current_version: str) -> VersionProbe:
    """Select the newest modpack and compare its version with ``current_version``."""
    latest = select_latest(entries)
    version = latest.version
    return VersionProbe(
        has_update=version != current_version,
        latest_version=version,
        source=latest,
    )


__all__ = [
    "ARCHIVE_EXTENSION",
    "CatalogEntry",
    "VersionProbe",
    "extract_version",
    "is_modpack_name",
    "parse_timestamp",
    "probe_from_entries",
    "select_latest",
]
