# services/api/imagecraft/routes_images.py

import logging
import os
import re
from typing import Optional
from urllib.parse import urlparse

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from .auth import User, require_user
from .config import settings
from .deps import HttpClientFactory, get_http_client_factory
from .provider import MediaProvider, get_provider, public_id_from_url
from .schemas import DeleteImageRequest, DeleteImageResponse

LOG = logging.getLogger("imagecraft.images")

router = APIRouter(prefix="/v1", tags=["images"])

_UNSAFE_FILENAME = re.compile(r'[\x00-\x1f"\\/;]')

def safe_filename(name: Optional[str], url: str) -> str:
    candidate = (name or "").strip() or os.path.basename(urlparse(url).path) or "image"
    candidate = _UNSAFE_FILENAME.sub("_", candidate)
    return candidate[:200]

def _check_download_url(url: str) -> None:
    p = urlparse(url)
    if p.scheme != "https" or (p.hostname or "").lower() not in {h.lower() for h in settings.DOWNLOAD_ALLOWED_HOSTS}:
        raise HTTPException(400, "Download URL is not a processed image")

@router.get("/download")
async def download(
    url: str,
    filename: Optional[str] = None,
    user: User = Depends(require_user),
    http_client_factory: HttpClientFactory = Depends(get_http_client_factory),
):
    """
    Proxies the provider asset back as an attachment. Failures keep the
    asset alive; the client deletes it only after a confirmed download.
    """
    _check_download_url(url)

    client = http_client_factory()
    try:
        resp = await client.send(client.build_request("GET", url), stream=True)
    except httpx.TimeoutException:
        await client.aclose()
        raise HTTPException(504, "Timed out fetching the image. Please try again.")
    except httpx.TransportError:
        await client.aclose()
        raise HTTPException(502, "Could not reach the image service. Please try again.")

    status = resp.status_code
    if not 200 <= status < 300:
        await resp.aclose()
        await client.aclose()
        LOG.warning("download upstream status=%s user=%s", status, user.id)
        # 4xx passes through; redirects we did not follow and 5xx are upstream faults
        raise HTTPException(status if 400 <= status < 500 else 502, "Failed to fetch image")

    async def _close():
        await resp.aclose()
        await client.aclose()

    headers = {"Content-Disposition": f'attachment; filename="{safe_filename(filename, url)}"'}
    return StreamingResponse(
        resp.aiter_bytes(),
        media_type=resp.headers.get("content-type") or "application/octet-stream",
        headers=headers,
        background=BackgroundTask(_close),
    )


@router.delete("/images", response_model=DeleteImageResponse)
async def delete_image(
    body: DeleteImageRequest,
    user: User = Depends(require_user),
    provider: MediaProvider = Depends(get_provider),
):
    public_id = body.public_id or (public_id_from_url(body.url) if body.url else None)
    if not public_id:
        raise HTTPException(400, "Public ID required")

    # idempotent: "not found" counts as deleted
    await provider.delete(public_id)
    LOG.info("image deleted public_id=%s user=%s", public_id, user.id)
    return DeleteImageResponse(success=True, public_id=public_id)
