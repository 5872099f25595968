# services/api/imagecraft/schemas.py

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional

from .work_preservation import ProcessingState

OutputFormat = Literal["auto", "jpg", "jpeg", "png", "webp", "avif", "gif", "bmp", "tiff", "ico"]

class _Camel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

class CompressResponse(_Camel):
    url: str
    public_id: str = Field(alias="publicId")
    original_size: int = Field(alias="originalSize")
    compressed_size: int = Field(alias="compressedSize")
    target_size: int = Field(alias="targetSize")
    format: str
    width: int
    height: int
    quality: Optional[int] = None
    compression_ratio: int = Field(alias="compressionRatio")
    target_achieved: int = Field(alias="targetAchieved")
    probes: int
    transformed: bool


class ToolResponse(_Camel):
    url: str
    public_id: str = Field(alias="publicId")
    size: int
    original_size: int = Field(alias="originalSize")
    format: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

class FormatConvertResponse(ToolResponse):
    original_format: str = Field(alias="originalFormat")

class PresetResizeResponse(ToolResponse):
    preset: Optional[str] = None

class OptimizeSettings(BaseModel):
    width: int = Field(gt=0, le=10000)
    height: int = Field(gt=0, le=10000)
    quality: int | Literal["auto"] = "auto"
    format: OutputFormat = "auto"

class AutoTagResponse(_Camel):
    tags: List[str]
    image_url: str = Field(alias="imageUrl")
    message: Optional[str] = None

class DeleteImageRequest(_Camel):
    public_id: Optional[str] = Field(default=None, alias="publicId")
    url: Optional[str] = None

class DeleteImageResponse(_Camel):
    success: bool
    public_id: str = Field(alias="publicId")

class HandoffResponse(BaseModel):
    exists: bool
    state: Optional[ProcessingState] = None

class SignInUrlResponse(_Camel):
    sign_in_url: str = Field(alias="signInUrl")
