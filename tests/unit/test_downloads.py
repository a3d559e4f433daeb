from __future__ import annotations

import httpx
import pytest

from common.downloads import Downloader, DownloadError, EmptyDownloadError, count_lines


URL = "https://docs.google.com/spreadsheets/d/e/abc/pub?gid=0&single=true&output=csv"


def _downloader(handler, **kwargs) -> Downloader:
    client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)
    return Downloader(client=client, retry_delay=0, **kwargs)


def test_fetch_follows_redirect_and_returns_body():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "docs.google.com":
            return httpx.Response(307, headers={"Location": "https://doc-0s.googleusercontent.com/export.csv"})
        return httpx.Response(200, content=b"key,en\nhello,Hello\n")

    with _downloader(handler) as dl:
        data = dl.fetch(URL)
    assert data == b"key,en\nhello,Hello\n"
    assert count_lines(data) == 2


def test_empty_body_is_an_error_unless_allowed():
    with _downloader(lambda _req: httpx.Response(200, content=b"")) as dl:
        with pytest.raises(EmptyDownloadError):
            dl.fetch(URL)
        assert dl.fetch(URL, allow_empty=True) == b""


def test_retries_transient_status_then_succeeds():
    calls = {"n": 0}

    def handler(_request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, content=b"a,b\n")

    with _downloader(handler, retries=3) as dl:
        assert dl.fetch(URL) == b"a,b\n"
    assert calls["n"] == 3


def test_non_retryable_status_fails_immediately():
    calls = {"n": 0}

    def handler(_request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(404)

    with _downloader(handler, retries=3) as dl:
        with pytest.raises(DownloadError):
            dl.fetch(URL)
    assert calls["n"] == 1


def test_transport_errors_exhaust_retries():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    with _downloader(handler, retries=2) as dl:
        with pytest.raises(DownloadError) as exc_info:
            dl.fetch(URL)
    assert calls["n"] == 3
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


def test_download_to_writes_file(tmp_path):
    with _downloader(lambda _req: httpx.Response(200, content=b"x,y\n")) as dl:
        out = dl.download_to(URL, tmp_path / "nested" / "partners.csv")
    assert out.read_bytes() == b"x,y\n"
