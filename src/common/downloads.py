from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import httpx


logger = logging.getLogger(__name__)

_RETRY_STATUSES = (429, 500, 502, 503, 504)


class DownloadError(RuntimeError):
    """Base error for HTTP downloads."""


class EmptyDownloadError(DownloadError):
    """The server answered successfully but with an empty body."""


class Downloader:
    """
    Small httpx wrapper for fetching published exports and release tarballs.

    Notes
    - Follows redirects (Google Sheets "publish to web" links redirect).
    - Retries transport errors and 429/5xx up to `retries` extra attempts,
      sleeping `retry_delay` seconds between attempts.
    - Non-retryable HTTP errors raise immediately.
    """

    def __init__(
        self,
        *,
        retries: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._retries = max(0, retries)
        self._retry_delay = retry_delay
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "Downloader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def fetch(self, url: str, *, allow_empty: bool = False) -> bytes:
        """GET `url` and return the body bytes.

        Raises EmptyDownloadError for an empty body unless `allow_empty`.
        """
        body = self._request(url)
        if not body and not allow_empty:
            raise EmptyDownloadError(f"Downloaded file is empty: {url}")
        return body

    def download_to(self, url: str, dest: Path, *, allow_empty: bool = False) -> Path:
        data = self.fetch(url, allow_empty=allow_empty)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        return dest

    # --------------- Internal ---------------
    def _request(self, url: str) -> bytes:
        attempt = 0
        last_exc: Optional[Exception] = None
        while attempt <= self._retries:
            try:
                resp = self._client.get(url)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
                logger.debug("Transport error fetching %s: %s", url, exc)
            else:
                if resp.status_code == 200:
                    return resp.content
                if resp.status_code not in _RETRY_STATUSES:
                    raise DownloadError(f"HTTP {resp.status_code} from {url}")
                last_exc = DownloadError(f"HTTP {resp.status_code} from {url}")

            attempt += 1
            if attempt <= self._retries and self._retry_delay > 0:
                time.sleep(self._retry_delay)

        raise DownloadError(f"Failed to download {url} after {self._retries + 1} attempt(s)") from last_exc


def count_lines(data: bytes) -> int:
    """Line count the way `wc -l` reports it (newline characters)."""
    return data.count(b"\n")


__all__ = [
    "Downloader",
    "DownloadError",
    "EmptyDownloadError",
    "count_lines",
]
