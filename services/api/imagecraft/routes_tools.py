# services/api/imagecraft/routes_tools.py

import logging
import os
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import ValidationError

from .auth import User, require_user
from .exceptions import ProviderError, UploadTimeoutError, UploadValidationError
from .image_safety import ValidatedUpload, validate_single_upload
from .presets import DEFAULT_PASSPORT_PRESET, PASSPORT_PRESETS, SOCIAL_PRESETS
from .provider import MediaProvider, UploadResult, get_provider
from .schemas import (
    AutoTagResponse,
    FormatConvertResponse,
    OptimizeSettings,
    PresetResizeResponse,
    ToolResponse,
)
from .security import enforce_rate_limit

LOG = logging.getLogger("imagecraft.tools")

router = APIRouter(prefix="/v1", tags=["tools"], dependencies=[Depends(enforce_rate_limit)])

CONVERT_FORMATS = {"jpg", "jpeg", "png", "webp", "avif", "gif", "bmp", "tiff", "ico"}

_COLOR_NAME = re.compile(r"^[a-z]{3,20}$")
_COLOR_HEX = re.compile(r"^#?([0-9a-fA-F]{6})$")


def _tool_response(res: UploadResult, upload: ValidatedUpload) -> dict:
    return dict(
        url=res.url,
        public_id=res.public_id,
        size=res.bytes,
        original_size=upload.size,
        format=res.format,
        # the provider omits dimensions for some formats; fall back to the decoded upload
        width=res.width or upload.width,
        height=res.height or upload.height,
    )


def original_format(upload: ValidatedUpload) -> str:
    ct = upload.content_type or ""
    if "/" in ct and ct.split("/", 1)[1]:
        return ct.split("/", 1)[1].lower()
    ext = os.path.splitext(upload.filename)[1].lstrip(".")
    return ext.lower() if ext else "unknown"


def provider_color(value: str) -> str:
    v = (value or "").strip()
    m = _COLOR_HEX.match(v)
    if m:
        return f"rgb:{m.group(1).lower()}"
    if _COLOR_NAME.match(v.lower()):
        return v.lower()
    raise UploadValidationError("Invalid background color")


def fallback_tags(filename: str, size: int) -> List[str]:
    """Basic tags when the provider's tagging add-on is unavailable."""
    tags: List[str] = []
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    if ext:
        tags.append("photo" if ext in ("jpg", "jpeg") else ext)

    size_mb = size / (1024 * 1024)
    if size_mb > 5:
        tags.append("high-resolution")
    elif size_mb < 0.5:
        tags.append("thumbnail")
    else:
        tags.append("standard-quality")

    tags.extend(["image", "digital", "upload"])
    return list(dict.fromkeys(tags))


def _provider_tags(res: UploadResult) -> List[str]:
    tags = list(res.tags)
    categorization = (res.raw.get("info") or {}).get("categorization") or {}
    for engine in categorization.values():
        for item in (engine or {}).get("data") or []:
            name = item.get("tag") if isinstance(item, dict) else item
            if name:
                tags.append(str(name))
    return [t for t in dict.fromkeys(tags) if t]


@router.post("/image-optimize", response_model=ToolResponse)
async def image_optimize(
    file: Optional[List[UploadFile]] = File(default=None),
    settings_json: Optional[str] = Form(default=None, alias="settings"),
    provider: MediaProvider = Depends(get_provider),
):
    upload = await validate_single_upload(file)
    if not settings_json:
        raise UploadValidationError("Missing optimization settings")
    try:
        opts = OptimizeSettings.model_validate_json(settings_json)
    except ValidationError:
        raise UploadValidationError("Invalid optimization settings")

    step = {"width": opts.width, "height": opts.height, "crop": "fill", "quality": opts.quality}
    extra = {}
    if opts.format == "auto":
        step["fetch_format"] = "auto"
    else:
        extra["format"] = opts.format

    res = await provider.upload(upload.data, folder="optimized", transformation=[step], **extra)
    return ToolResponse(**_tool_response(res, upload))


@router.post("/background-remove", response_model=ToolResponse)
async def background_remove(
    file: Optional[List[UploadFile]] = File(default=None),
    provider: MediaProvider = Depends(get_provider),
):
    upload = await validate_single_upload(file)
    res = await provider.upload(
        upload.data,
        folder="background-removed",
        transformation=[{"effect": "background_removal"}],
        format="png",
    )
    return ToolResponse(**_tool_response(res, upload))


@router.post("/format-convert", response_model=FormatConvertResponse)
async def format_convert(
    file: Optional[List[UploadFile]] = File(default=None),
    target_format: Optional[str] = Form(default=None, alias="format"),
    quality: str = Form(default="auto"),
    provider: MediaProvider = Depends(get_provider),
):
    upload = await validate_single_upload(file)
    fmt = (target_format or "").lower().strip()
    if not fmt:
        raise UploadValidationError("Missing required fields")
    if fmt not in CONVERT_FORMATS:
        raise UploadValidationError(f"Unsupported target format: {fmt}")

    q: int | str = quality
    if quality != "auto":
        try:
            q = int(quality)
        except ValueError:
            raise UploadValidationError("Quality must be a number or 'auto'")
        if not 1 <= q <= 100:
            raise UploadValidationError("Quality must be between 1 and 100")

    res = await provider.upload(
        upload.data,
        folder="format-converted",
        format=fmt,
        transformation=[{"quality": q}],
    )
    return FormatConvertResponse(**_tool_response(res, upload), original_format=original_format(upload))


@router.post("/social-resize", response_model=PresetResizeResponse)
async def social_resize(
    file: Optional[List[UploadFile]] = File(default=None),
    preset: Optional[str] = Form(default=None),
    width: Optional[int] = Form(default=None),
    height: Optional[int] = Form(default=None),
    preview: bool = Form(default=False),
    provider: MediaProvider = Depends(get_provider),
):
    upload = await validate_single_upload(file)
    if (not width or not height) and preset in SOCIAL_PRESETS:
        width, height = SOCIAL_PRESETS[preset].width, SOCIAL_PRESETS[preset].height
    if not width or not height or width <= 0 or height <= 0:
        raise UploadValidationError("Missing required fields")

    res = await provider.upload(
        upload.data,
        folder="social-preview" if preview else "social-resized",
        transformation=[{
            "width": width,
            "height": height,
            "crop": "fill",
            "gravity": "auto",
            "quality": "auto",
            "fetch_format": "auto",
        }],
    )
    return PresetResizeResponse(**_tool_response(res, upload), preset=preset)


@router.post("/passport-resize", response_model=PresetResizeResponse)
async def passport_resize(
    file: Optional[List[UploadFile]] = File(default=None),
    preset: str = Form(default=DEFAULT_PASSPORT_PRESET),
    background_color: str = Form(default="white", alias="backgroundColor"),
    zoom: float = Form(default=0.75),
    provider: MediaProvider = Depends(get_provider),
):
    upload = await validate_single_upload(file)
    p = PASSPORT_PRESETS.get(preset)
    if p is None:
        raise UploadValidationError(f"Unknown passport preset: {preset}")
    if not 0.3 <= zoom <= 2.0:
        raise UploadValidationError("Zoom must be between 0.3 and 2.0")

    res = await provider.upload(
        upload.data,
        folder="passport-photos",
        format="jpg",
        transformation=[
            {"effect": "background_removal"},
            {"width": p.width, "height": p.height, "crop": "thumb", "gravity": "face", "zoom": zoom},
            {"background": provider_color(background_color)},
        ],
    )
    return PresetResizeResponse(**_tool_response(res, upload), preset=preset)


@router.post("/auto-tag", response_model=AutoTagResponse)
async def auto_tag(
    file: Optional[List[UploadFile]] = File(default=None),
    user: User = Depends(require_user),
    provider: MediaProvider = Depends(get_provider),
):
    upload = await validate_single_upload(file)
    try:
        res = await provider.upload(
            upload.data,
            folder="auto-tagged",
            categorization="google_tagging",
            auto_tagging=0.7,
        )
        return AutoTagResponse(tags=_provider_tags(res), image_url=res.url)
    except UploadTimeoutError:
        raise
    except ProviderError as e:
        # tagging is a paid add-on; fall back to a plain upload + basic tags
        LOG.info("auto-tagging unavailable for user=%s, using fallback: %s", user.id, e)

    res = await provider.upload(upload.data, folder="auto-tagged")
    return AutoTagResponse(
        tags=fallback_tags(upload.filename, upload.size),
        image_url=res.url,
        message="Auto-tagging requires premium subscription. Using basic analysis.",
    )
