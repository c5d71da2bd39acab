"""Yandex.Disk public-folder adapter implementing the catalog port.

The adapter lists the public folder, picks the newest modpack archive,
resolves transient download links and streams archives to disk. Integrity
checks are delegated to :mod:`serverpack.utils.integrity` once the stream
completes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Type
from urllib.parse import urljoin

import requests
from requests import exceptions as req_exc

from serverpack.adapters.http_client import HttpConfig, RetryingSession, TransportTimeout
from serverpack.domain.catalog import CatalogEntry, VersionProbe, probe_from_entries, select_latest
from serverpack.domain.errors import (
    CatalogUnavailable,
    DownloadFailed,
    EmptyCatalog,
    LinkResolutionFailed,
    ServerPackError,
)
from serverpack.utils.integrity import VerifyOptions, verify_download
from serverpack.utils.logging import format_megabytes

DEFAULT_API_BASE = "https://cloud-api.yandex.net/v1/disk/public"
PAGE_SIZE = 100
STREAM_CHUNK_BYTES = 64 * 1024
PROGRESS_LOG_BYTES = 10 * 1024 * 1024
_REDIRECT_CODES = {301, 302, 303, 307, 308}


class YandexDiskCatalog:
    """Catalog client for one public Yandex.Disk folder."""

    def __init__(
        self,
        public_url: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        cfg: Optional[HttpConfig] = None,
        session: Optional[RetryingSession] = None,
        page_size: int = PAGE_SIZE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not str(public_url or "").strip():
            raise ValueError("YandexDiskCatalog requires a public folder URL")
        self.public_url = str(public_url).strip()
        self.api_base = api_base.rstrip("/")
        self.cfg = cfg or HttpConfig()
        self.session = session or RetryingSession(self.cfg)
        self.page_size = max(1, int(page_size))
        self._log = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def list_entries(self) -> List[CatalogEntry]:
        """Return every file in the public folder, following pagination."""
        self._log.info("Fetching modpack list from Yandex.Disk...")
        entries: List[CatalogEntry] = []
        offset = 0
        while True:
            payload = self._get_json(
                f"{self.api_base}/resources",
                params={"public_key": self.public_url, "limit": self.page_size, "offset": offset},
                error_cls=CatalogUnavailable,
                context="list public folder",
            )
            embedded = payload.get("_embedded")
            if not isinstance(embedded, Mapping) or not isinstance(embedded.get("items"), list):
                raise CatalogUnavailable(
                    "Public folder listing has no items",
                    hint="Check that YANDEX_DISK_URL points to a public folder.",
                )
            items = embedded["items"]
            for item in items:
                if not isinstance(item, Mapping):
                    raise CatalogUnavailable("Malformed catalog item", hint=repr(item))
                if item.get("type") != "file":
                    continue
                try:
                    entries.append(CatalogEntry.from_payload(item))
                except CatalogUnavailable as exc:
                    self._log.warning("Skipping catalog item: %s (%s)", exc.message, exc.hint)

            offset += len(items)
            total = embedded.get("total")
            if not items or len(items) < self.page_size:
                break
            if not isinstance(total, int) or offset >= total:
                break

        if not entries:
            raise EmptyCatalog("No files found in the public folder")
        return entries

    def select_latest(self, entries: List[CatalogEntry]) -> CatalogEntry:
        latest = select_latest(entries)
        self._log.info("Found latest modpack: %s (%s)", latest.name, latest.version)
        return latest

    def probe_update(self, current_version: str) -> VersionProbe:
        """Compare ``current_version`` with the newest modpack in the folder."""
        probe = probe_from_entries(self.list_entries(), current_version)
        self._log.info(
            "Latest modpack %s (%s), current %s, update=%s",
            probe.source.name,
            probe.latest_version,
            current_version,
            probe.has_update,
        )
        return probe

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------
    def resolve_download_link(self, remote_path: str) -> str:
        """Ask the host for a transient download URL of ``remote_path``."""
        self._log.info("Getting download link for %s...", remote_path)
        payload = self._get_json(
            f"{self.api_base}/resources/download",
            params={"public_key": self.public_url, "path": remote_path},
            error_cls=LinkResolutionFailed,
            context="resolve download link",
        )
        href = str(payload.get("href") or "").strip()
        if not href:
            raise LinkResolutionFailed(
                "Failed to get download link from Yandex.Disk",
                hint=f"No href returned for {remote_path}.",
            )
        return href

    def download(
        self,
        remote_path: str,
        dest_path: Path,
        options: VerifyOptions = VerifyOptions(),
    ) -> int:
        """Stream ``remote_path`` into ``dest_path`` and verify it.

        Returns the number of bytes written. A partial file is left behind on
        failure; removing it is the caller's job.
        """
        href = self.resolve_download_link(remote_path)
        self._log.info("Got download URL, initiating connection...")
        response = self._open_stream(href)
        try:
            downloaded = self._stream_to_file(response, Path(dest_path))
        finally:
            response.close()
        self._log.info("Download completed: %s", format_megabytes(downloaded))
        verify_download(Path(dest_path), downloaded, options)
        return downloaded

    def _open_stream(self, href: str) -> requests.Response:
        """GET ``href`` following at most one redirect."""
        response = self._stream_get(href)
        if response.status_code in _REDIRECT_CODES:
            location = response.headers.get("Location") or response.headers.get("location")
            response.close()
            if not location:
                raise DownloadFailed("Redirect without a Location header", hint=href)
            self._log.info("Following redirect...")
            response = self._stream_get(urljoin(href, location))
            if response.status_code in _REDIRECT_CODES:
                response.close()
                raise DownloadFailed(
                    "Download redirected more than once",
                    hint="Only one redirect level is followed.",
                )
        if not 200 <= response.status_code < 300:
            status = response.status_code
            response.close()
            raise DownloadFailed(f"Download failed with HTTP {status}", hint=href)
        return response

    def _stream_get(self, url: str) -> requests.Response:
        try:
            return self.session.get(
                url,
                accept="*/*",
                timeout=self.cfg.download_timeout_s,
                stream=True,
                allow_redirects=False,
            )
        except TransportTimeout as exc:
            raise DownloadFailed(exc.message, hint=exc.hint) from exc
        except req_exc.RequestException as exc:
            raise DownloadFailed(f"Error downloading file: {exc}") from exc

    def _stream_to_file(self, response: requests.Response, dest_path: Path) -> int:
        downloaded = 0
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with dest_path.open("wb") as handle:
                for chunk in response.iter_content(chunk_size=STREAM_CHUNK_BYTES):
                    if not chunk:
                        continue
                    if downloaded == 0:
                        self._log.info("Data stream started, downloading...")
                    downloaded += len(chunk)
                    handle.write(chunk)
                    if downloaded % PROGRESS_LOG_BYTES < len(chunk):
                        self._log.info("Downloaded: %s", format_megabytes(downloaded))
        except (req_exc.RequestException, OSError) as exc:
            self._log.warning("Download error after %d bytes: %s", downloaded, exc)
            raise DownloadFailed(f"Download interrupted: {exc}", hint=str(dest_path)) from exc
        return downloaded

    # ------------------------------------------------------------------
    def _get_json(
        self,
        url: str,
        *,
        params: Dict[str, Any],
        error_cls: Type[ServerPackError],
        context: str,
    ) -> Mapping[str, Any]:
        try:
            resp = self.session.get(url, params=params, timeout=self.cfg.request_timeout_s)
        except TransportTimeout as exc:
            raise error_cls(f"Failed to {context}: {exc.message}", hint=exc.hint) from exc
        except req_exc.RequestException as exc:
            raise error_cls(f"Failed to {context}: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise error_cls(
                f"Failed to {context}: HTTP {resp.status_code}",
                hint=str(getattr(resp, "text", "") or "")[:200],
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise error_cls(f"Failed to parse response ({context})", hint=str(exc)) from exc
        if not isinstance(payload, Mapping):
            raise error_cls(f"Unexpected response shape ({context})", hint=type(payload).__name__)
        return payload


__all__ = ["DEFAULT_API_BASE", "YandexDiskCatalog"]
