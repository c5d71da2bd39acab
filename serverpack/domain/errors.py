"""Typed failures for the catalog, integrity and build pipeline.

Every error carries a stable ``code`` plus a human ``message`` and an
optional ``hint`` so the HTTP layer and the build progress record can show
the same text without string parsing.
"""

from __future__ import annotations

from typing import Optional


class ServerPackError(RuntimeError):
    """Base error with stable code/message/hint values."""

    default_code = "serverpack.error"

    def __init__(self, message: str, *, code: Optional[str] = None, hint: str = "") -> None:
        super().__init__(message)
        self.code = str(code or self.default_code)
        self.message = str(message)
        self.hint = str(hint or "")

    def to_dict(self) -> dict:
        """Return the error payload used in API responses."""
        return {"code": self.code, "message": self.message, "hint": self.hint}


class CatalogUnavailable(ServerPackError):
    """The public folder listing could not be fetched or parsed."""

    default_code = "catalog.unavailable"


class EmptyCatalog(ServerPackError):
    """The public folder listing contains no files."""

    default_code = "catalog.empty"


class NoMatchingEntry(ServerPackError):
    """No catalog entry looks like a modpack archive."""

    default_code = "catalog.no_match"


class LinkResolutionFailed(ServerPackError):
    """The host did not return a usable download link."""

    default_code = "catalog.link_failed"


class DownloadFailed(ServerPackError):
    """Transport failure while streaming the archive to disk."""

    default_code = "download.failed"


class IntegrityError(ServerPackError):
    """Downloaded bytes do not match the catalog metadata."""

    default_code = "integrity.failed"


class SizeMismatch(IntegrityError):
    default_code = "integrity.size_mismatch"

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"File size mismatch: expected {expected} bytes, got {actual} bytes",
            hint="The download was truncated or the remote file changed.",
        )
        self.expected = expected
        self.actual = actual


class HashMismatch(IntegrityError):
    default_code = "integrity.hash_mismatch"

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            f"MD5 hash mismatch: expected {expected}, got {actual}",
            hint="The downloaded archive is corrupted.",
        )
        self.expected = expected
        self.actual = actual


class BuildStepFailed(ServerPackError):
    """One archive transform step failed; ``cause`` holds the underlying error."""

    default_code = "build.step_failed"

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"Build step '{step}' failed: {cause}", hint=type(cause).__name__)
        self.step = step
        self.cause = cause


__all__ = [
    "BuildStepFailed",
    "CatalogUnavailable",
    "DownloadFailed",
    "EmptyCatalog",
    "HashMismatch",
    "IntegrityError",
    "LinkResolutionFailed",
    "NoMatchingEntry",
    "ServerPackError",
    "SizeMismatch",
]
