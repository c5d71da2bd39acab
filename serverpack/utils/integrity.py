"""Size and MD5 verification for downloaded archives."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from serverpack.domain.errors import HashMismatch, SizeMismatch

_CHUNK_SIZE = 1024 * 1024
_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifyOptions:
    """Expected values published by the catalog; ``None`` skips the check."""

    expected_size: Optional[int] = None
    expected_md5: Optional[str] = None


def compute_file_md5(path: Path) -> str:
    """Compute the MD5 hex digest of one file."""
    digest = hashlib.md5()
    with Path(path).open("rb") as handle:
        while True:
            chunk = handle.read(_CHUNK_SIZE)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def verify_download(path: Path, downloaded_bytes: int, options: VerifyOptions) -> None:
    """Check an observed byte count and the file digest against ``options``.

    Raises:
        SizeMismatch: ``downloaded_bytes`` differs from the expected size.
        HashMismatch: the MD5 of ``path`` differs from the expected digest.
    """
    if options.expected_size is not None and downloaded_bytes != options.expected_size:
        raise SizeMismatch(options.expected_size, downloaded_bytes)

    expected = str(options.expected_md5 or "").strip().lower()
    if not expected:
        return
    _log.info("Verifying file integrity (MD5)...")
    actual = compute_file_md5(path).lower()
    if actual != expected:
        raise HashMismatch(expected, actual)
    _log.info("File integrity verified successfully")


def verify_file(path: Path, options: VerifyOptions) -> None:
    """Verify a file already on disk, using its size on disk as the byte count."""
    verify_download(path, Path(path).stat().st_size, options)


__all__ = ["VerifyOptions", "compute_file_md5", "verify_download", "verify_file"]
