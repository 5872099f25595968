# services/api/imagecraft/transfer.py

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, Optional

import httpx

from .exceptions import MalformedResponseError, TransferHTTPError
from .resilience import RetryPolicy, attempt

LOG = logging.getLogger("imagecraft.transfer")

Release = Callable[[], Awaitable[object]]


async def fetch_to_file(
    client: httpx.AsyncClient,
    url: str,
    dest: Path,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> int:
    """
    One round trip: GET `url` and write the body to `dest`.
    Writes go to a temp file first so a failed attempt never leaves a
    truncated download behind. Returns bytes written.
    """
    resp = await client.get(url, params=params, headers=headers)
    if resp.status_code < 200 or resp.status_code >= 300:
        raise TransferHTTPError(resp.status_code, resp.reason_phrase)

    body = resp.content
    if not body:
        raise MalformedResponseError("empty response body")

    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=dest.parent, prefix=".download-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(body)
        os.replace(tmp, dest)
    except OSError:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    return len(body)


async def download_and_release(
    client: httpx.AsyncClient,
    url: str,
    dest: Path,
    release: Optional[Release] = None,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    policy: Optional[RetryPolicy] = None,
    max_retries: Optional[int] = None,
) -> bool:
    """
    Download with retries, then release the provider asset. `release` runs
    only when the download is confirmed, so a failed download can always be
    retried against a still-live asset.
    """

    async def _op():
        n = await fetch_to_file(client, url, dest, params=params, headers=headers)
        LOG.info("downloaded %s bytes to %s", n, dest)

    return await attempt(_op, max_retries, policy=policy, on_success=release)
