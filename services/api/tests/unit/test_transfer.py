import asyncio

import httpx
import pytest

from imagecraft.exceptions import MalformedResponseError, TransferHTTPError
from imagecraft.resilience import RetryPolicy
from imagecraft.transfer import download_and_release, fetch_to_file


async def _no_sleep(seconds):
    return None


def _client(responses):
    """AsyncClient whose transport replays `responses` in order."""
    queue = list(responses)
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        out = queue.pop(0)
        if isinstance(out, Exception):
            raise out
        return out

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://api.test")
    return client, seen


async def _download(client, dest, release=None, **kwargs):
    async with client:
        return await download_and_release(
            client, "/v1/download", dest, release, policy=RetryPolicy(sleep=_no_sleep), **kwargs
        )


class TestFetchToFile:
    def test_writes_body(self, tmp_path) -> None:
        client, seen = _client([httpx.Response(200, content=b"image-bytes")])
        dest = tmp_path / "out" / "photo.jpg"

        async def run():
            async with client:
                return await fetch_to_file(client, "/v1/download", dest, params={"url": "u"})

        assert asyncio.run(run()) == 11
        assert dest.read_bytes() == b"image-bytes"
        assert seen[0].url.params["url"] == "u"

    def test_http_error_leaves_no_file(self, tmp_path) -> None:
        client, _ = _client([httpx.Response(503)])
        dest = tmp_path / "photo.jpg"

        async def run():
            async with client:
                await fetch_to_file(client, "/v1/download", dest)

        with pytest.raises(TransferHTTPError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.status_code == 503
        assert list(tmp_path.iterdir()) == []

    def test_empty_body_is_malformed(self, tmp_path) -> None:
        client, _ = _client([httpx.Response(200, content=b"")])

        async def run():
            async with client:
                await fetch_to_file(client, "/v1/download", tmp_path / "x.jpg")

        with pytest.raises(MalformedResponseError):
            asyncio.run(run())


class TestDownloadAndRelease:
    def test_retries_then_releases_once(self, tmp_path) -> None:
        client, seen = _client([
            httpx.Response(502),
            httpx.ConnectError("reset"),
            httpx.Response(200, content=b"ok"),
        ])
        released = []

        async def release():
            released.append(True)

        ok = asyncio.run(_download(client, tmp_path / "a.jpg", release))

        assert ok is True
        assert len(seen) == 3
        assert released == [True]
        assert (tmp_path / "a.jpg").read_bytes() == b"ok"

    def test_failure_keeps_asset(self, tmp_path) -> None:
        client, seen = _client([httpx.Response(500)] * 4)
        released = []

        async def release():
            released.append(True)

        ok = asyncio.run(_download(client, tmp_path / "a.jpg", release))

        assert ok is False
        assert len(seen) == 4
        assert released == []
        assert not (tmp_path / "a.jpg").exists()

    def test_forbidden_is_final(self, tmp_path) -> None:
        client, seen = _client([httpx.Response(403)])

        ok = asyncio.run(_download(client, tmp_path / "a.jpg", max_retries=3))

        assert ok is False
        assert len(seen) == 1
