from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Protocol

from .build_state import BuildPhase
from .catalog import VersionProbe
from ..utils.integrity import VerifyOptions

ProgressObserver = Callable[[BuildPhase], None]


# ---- Ports (Hexagonal boundaries) ----
class CatalogPort(Protocol):
    """Remote modpack catalog: version probing and verified downloads."""

    def probe_update(self, current_version: str) -> VersionProbe: ...
    def download(self, remote_path: str, dest_path: Path, options: VerifyOptions) -> int: ...


class TransformPort(Protocol):
    """Turns a downloaded modpack archive into the served server archive."""

    def __call__(
        self,
        archive_path: Path,
        template_dir: Path,
        output_path: Path,
        progress: Optional[ProgressObserver] = None,
    ) -> object: ...
