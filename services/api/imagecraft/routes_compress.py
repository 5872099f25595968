# services/api/imagecraft/routes_compress.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from .deps import HttpClientFactory, get_http_client_factory
from .image_safety import validate_single_upload
from .provider import MediaProvider, get_provider
from .schemas import CompressResponse
from .security import enforce_rate_limit
from .target_size import find_target_size, http_measure, validate_target

router = APIRouter(prefix="/v1", tags=["compress"])

@router.post(
    "/image-compress",
    response_model=CompressResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
async def image_compress(
    file: Optional[List[UploadFile]] = File(default=None),
    target_size: Optional[int] = Form(default=None, alias="targetSize"),
    provider: MediaProvider = Depends(get_provider),
    http_client_factory: HttpClientFactory = Depends(get_http_client_factory),
):
    """
    Compress toward `targetSize` KB. Open to anonymous callers (try before
    sign-up); only the download is gated.
    """
    upload = await validate_single_upload(file)
    original = upload.size

    # all bounds are checked before the provider sees anything
    target_bytes = validate_target(original, target_size)

    async with http_client_factory() as client:
        result = await find_target_size(
            provider,
            upload.data,
            target_bytes,
            http_measure(client),
            dimensions=(upload.width, upload.height) if upload.width and upload.height else None,
        )

    return CompressResponse(
        url=result.url,
        public_id=result.public_id,
        original_size=original,
        compressed_size=result.size_bytes,
        target_size=target_bytes,
        format=result.format,
        width=result.width,
        height=result.height,
        quality=result.quality,
        compression_ratio=result.compression_ratio(original),
        target_achieved=result.target_achieved(target_bytes),
        probes=result.probes,
        transformed=result.transformed,
    )
