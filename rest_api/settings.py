"""Environment-driven configuration for the server builder API."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from serverpack.adapters.http_client import HttpConfig
from serverpack.adapters.yandex_disk import DEFAULT_API_BASE

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DISK_URL = "https://disk.yandex.ru/d/m0vmhfXyyBE7G"
DEFAULT_PORT = 3003


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = str(env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_path(env: Mapping[str, str], name: str, default: Path) -> Path:
    raw = str(env.get(name) or "").strip()
    return Path(raw).expanduser() if raw else default


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings.

    Attributes:
        disk_url: Public Yandex.Disk folder holding the modpack archives.
        api_base: Base URL of the Yandex.Disk public API.
        host: Interface the HTTP server binds to.
        port: Port the HTTP server listens on.
        storage_root: Directory for the version file, archive and scratch data.
        template_dir: Server skeleton merged under every modpack.
        http: Timeout and retry policy for catalog requests.
    """

    disk_url: str
    api_base: str
    host: str
    port: int
    storage_root: Path
    template_dir: Path
    http: HttpConfig

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        source = os.environ if env is None else env
        return cls(
            disk_url=str(source.get("YANDEX_DISK_URL") or DEFAULT_DISK_URL).strip(),
            api_base=str(source.get("YANDEX_API_BASE") or DEFAULT_API_BASE).strip(),
            host=str(source.get("HOST") or "0.0.0.0").strip(),
            port=_env_int(source, "PORT", DEFAULT_PORT),
            storage_root=_env_path(source, "STORAGE_ROOT", PROJECT_ROOT / "storage"),
            template_dir=_env_path(source, "TEMPLATE_DIR", PROJECT_ROOT / "forge-clean"),
            http=HttpConfig(
                request_timeout_s=_env_int(source, "HTTP_TIMEOUT_S", 10),
                download_timeout_s=_env_int(source, "DOWNLOAD_TIMEOUT_S", 60),
                retries=_env_int(source, "HTTP_RETRIES", 2),
            ),
        )
