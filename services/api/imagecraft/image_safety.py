# services/api/imagecraft/image_safety.py

from __future__ import annotations

import os
from dataclasses import dataclass
from io import BytesIO
from typing import List, Literal, Optional

from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError

from .config import settings
from .exceptions import UploadValidationError

ImageType = Literal["jpeg", "png", "webp", "heic"]

ALLOWED_CONTENT_TYPES = {
    "image/jpeg", "image/jpg", "image/png", "image/webp", "image/heic", "image/heif",
}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".heic", ".heif"}

_HEIF_BRANDS = {b"heic", b"heix", b"hevc", b"hevx", b"heim", b"heis", b"mif1", b"msf1"}

@dataclass
class ValidatedUpload:
    data: bytes
    filename: str
    content_type: Optional[str]
    image_type: Optional[ImageType]
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.data)

def sniff_type(data: bytes) -> Optional[ImageType]:
    if len(data) < 12:
        return None
    # JPEG: FF D8 FF
    if data[0:3] == b"\xFF\xD8\xFF":
        return "jpeg"
    # PNG: 89 50 4E 47 0D 0A 1A 0A
    if data[0:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    # WebP: RIFF....WEBP
    if data[0:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    # HEIC/HEIF: ....ftyp<brand>
    if data[4:8] == b"ftyp" and data[8:12] in _HEIF_BRANDS:
        return "heic"
    return None

def format_megabytes(num_bytes: int) -> str:
    return f"{num_bytes / (1024 * 1024):.1f}MB"

def _probe_dimensions(data: bytes) -> tuple[int, int]:
    try:
        bio = BytesIO(data)
        im = Image.open(bio)
        im.verify()
        im = Image.open(BytesIO(data))
        return im.size
    except Image.DecompressionBombError:
        raise UploadValidationError("Image dimensions are too large to process")
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        raise UploadValidationError("The uploaded file is not a readable image")

def _is_allowed(content_type: Optional[str], filename: str) -> bool:
    if content_type and content_type.lower() in ALLOWED_CONTENT_TYPES:
        return True
    return os.path.splitext(filename or "")[1].lower() in ALLOWED_EXTENSIONS

async def validate_single_upload(files: List[UploadFile] | None) -> ValidatedUpload:
    """
    Input checks shared by every tool endpoint:
      - exactly one file in the `file` field
      - JPEG / PNG / WebP / HEIC, by declared type, extension or magic bytes
      - at most MAX_UPLOAD_MB (message names the actual size)
      - JPEG/PNG/WebP must decode; HEIC is passed through to the provider
    """
    if not files:
        raise UploadValidationError("No file provided")
    if len(files) > 1:
        raise UploadValidationError("Only one file can be uploaded per request")

    upload = files[0]
    filename = upload.filename or ""
    data = await upload.read()
    if not data:
        raise UploadValidationError("The uploaded file is empty")

    if len(data) > settings.max_upload_bytes:
        raise UploadValidationError(
            f"File too large ({format_megabytes(len(data))}). Maximum size is {settings.MAX_UPLOAD_MB}MB"
        )

    image_type = sniff_type(data)
    if image_type is None and not _is_allowed(upload.content_type, filename):
        raise UploadValidationError("Invalid file type. Only JPEG, PNG, WebP, and HEIC are allowed")

    width = height = None
    if image_type in ("jpeg", "png", "webp"):
        width, height = _probe_dimensions(data)

    return ValidatedUpload(
        data=data,
        filename=filename,
        content_type=upload.content_type,
        image_type=image_type,
        width=width,
        height=height,
    )
