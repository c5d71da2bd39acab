"""Outbound HTTP transport for the catalog adapter.

``RetryingSession`` wraps one ``requests.Session``. Every call carries the
same ``User-Agent``, timeouts come from :class:`HttpConfig`, and timeout or
connection failures are retried with a linear backoff. Non-2xx responses are
returned untouched; the adapter decides what they mean.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests
from requests import exceptions as req_exc

from serverpack import __version__
from serverpack.domain.errors import ServerPackError

USER_AGENT = f"serverpack-builder/{__version__}"


class TransportTimeout(ServerPackError):
    """All attempts failed with timeout or connectivity errors."""

    default_code = "http.timeout"


@dataclass
class HttpConfig:
    """Timeout and retry policy for catalog calls.

    Attributes:
        request_timeout_s: Timeout in seconds for listing and link calls.
        download_timeout_s: Timeout in seconds between archive chunks.
        retries: Extra attempts after the first one.
        backoff_s: Delay before retry ``n`` is ``n * backoff_s`` seconds.
    """

    request_timeout_s: int = 10
    download_timeout_s: int = 60
    retries: int = 2
    backoff_s: float = 0.5


class RetryingSession:
    """``requests.Session`` wrapper retrying transport failures."""

    def __init__(
        self,
        cfg: HttpConfig,
        session: Optional[requests.Session] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session = session or requests.Session()
        self.cfg = cfg
        self._sleep = sleep
        self._log = logger or logging.getLogger(__name__)

    def get(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        accept: str = "application/json",
        timeout: Optional[int] = None,
        stream: bool = False,
        allow_redirects: bool = True,
    ) -> requests.Response:
        """GET ``url``; raise :class:`TransportTimeout` once retries run out."""
        attempts = max(0, int(self.cfg.retries)) + 1
        last_exc: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return self.session.get(
                    url,
                    params=params,
                    headers={"Accept": accept, "User-Agent": USER_AGENT},
                    timeout=timeout or self.cfg.request_timeout_s,
                    stream=stream,
                    allow_redirects=allow_redirects,
                )
            except (req_exc.Timeout, req_exc.ConnectionError) as exc:
                last_exc = exc
                if attempt < attempts:
                    self._log.warning("GET %s failed (%s), retry %d/%d", url, exc, attempt, attempts - 1)
                    self._sleep(self.cfg.backoff_s * attempt)
        raise TransportTimeout(
            f"Timeout contacting {url} after {attempts} attempt(s)",
            hint=str(last_exc),
        )


__all__ = ["HttpConfig", "RetryingSession", "TransportTimeout", "USER_AGENT"]
