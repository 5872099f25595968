# services/api/imagecraft/provider.py

import asyncio
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import cloudinary.exceptions
import cloudinary.uploader
from cloudinary.utils import cloudinary_url
from fastapi.concurrency import run_in_threadpool

from .config import settings
from .exceptions import ProviderConfigError, ProviderError, UploadTimeoutError

LOG = logging.getLogger("imagecraft.provider")

_VERSION_SEGMENT = re.compile(r"^v\d+$")

@dataclass
class UploadResult:
    url: str
    public_id: str
    bytes: int
    width: int
    height: int
    format: str
    tags: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

class MediaProvider:
    async def upload(self, data: bytes, **options: Any) -> UploadResult:
        raise NotImplementedError

    def transform(self, public_id: str, **options: Any) -> str:
        """Delivery URL for a derived asset. Builds a URL only, no request."""
        raise NotImplementedError

    async def delete(self, public_id: str) -> bool:
        """Idempotent: an already-deleted asset counts as deleted."""
        raise NotImplementedError


def _to_upload_result(res: Any) -> UploadResult:
    if not isinstance(res, dict):
        raise ProviderError("Malformed provider response")
    try:
        return UploadResult(
            url=res["secure_url"],
            public_id=res["public_id"],
            bytes=int(res.get("bytes") or 0),
            width=int(res.get("width") or 0),
            height=int(res.get("height") or 0),
            format=str(res.get("format") or ""),
            tags=list(res.get("tags") or []),
            raw=res,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ProviderError("Malformed provider response", details=repr(e))


class CloudinaryProvider(MediaProvider):
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, timeout_sec: float = 30.0):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout_sec = float(timeout_sec)

    def _credentials(self) -> Dict[str, Any]:
        return {
            "cloud_name": self.cloud_name,
            "api_key": self.api_key,
            "api_secret": self.api_secret,
        }

    async def _call(self, fn, *args: Any, **kwargs: Any) -> Any:
        # The SDK blocks; run it off the event loop and bound the wait.
        try:
            return await asyncio.wait_for(
                run_in_threadpool(fn, *args, **kwargs),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError:
            raise UploadTimeoutError(
                "Upload timed out. The image service took too long to respond, please try again."
            )
        except cloudinary.exceptions.Error as e:
            LOG.warning("provider call failed: %s", e)
            raise ProviderError(str(e) or "Media provider error", details=repr(e))

    async def upload(self, data: bytes, **options: Any) -> UploadResult:
        opts = {"resource_type": "image", "timeout": self.timeout_sec}
        opts.update(options)
        opts.update(self._credentials())
        res = await self._call(cloudinary.uploader.upload, io.BytesIO(data), **opts)
        out = _to_upload_result(res)
        LOG.info("uploaded public_id=%s bytes=%s folder=%s", out.public_id, out.bytes, options.get("folder"))
        return out

    def transform(self, public_id: str, **options: Any) -> str:
        url, _opts = cloudinary_url(public_id, secure=True, cloud_name=self.cloud_name, **options)
        return url

    async def delete(self, public_id: str) -> bool:
        res = await self._call(
            cloudinary.uploader.destroy,
            public_id,
            invalidate=True,
            **self._credentials(),
        )
        result = (res or {}).get("result") if isinstance(res, dict) else None
        if result in ("ok", "not found"):
            LOG.info("deleted public_id=%s result=%s", public_id, result)
            return True
        raise ProviderError("Failed to delete image", details=repr(res))


def public_id_from_url(url: str) -> Optional[str]:
    """
    https://res.cloudinary.com/<cloud>/image/upload/[transforms/]v123/folder/name.webp
    -> folder/name
    """
    try:
        parts = urlparse(url).path.split("/")
    except (TypeError, ValueError):
        return None
    if "upload" not in parts:
        return None
    rest = parts[parts.index("upload") + 1:]
    for i, seg in enumerate(rest):
        if _VERSION_SEGMENT.match(seg):
            rest = rest[i + 1:]
            break
    rest = [p for p in rest if p]
    if not rest:
        return None
    rest[-1] = re.sub(r"\.[^/.]+$", "", rest[-1])
    return "/".join(rest) or None


_provider_singleton: MediaProvider | None = None

def get_provider() -> MediaProvider:
    global _provider_singleton
    if _provider_singleton is not None:
        return _provider_singleton

    if not (settings.CLOUDINARY_CLOUD_NAME and settings.CLOUDINARY_API_KEY and settings.CLOUDINARY_API_SECRET):
        raise ProviderConfigError("Media provider credentials not configured")

    _provider_singleton = CloudinaryProvider(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        timeout_sec=settings.PROVIDER_TIMEOUT_SEC,
    )
    return _provider_singleton
