"""
Pydantic models for API request/response schemas.
"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import ErrorKind


class ImageSize(str, Enum):
    """Output sizes accepted by the dall-e-3 model."""
    SQUARE = "1024x1024"
    LANDSCAPE = "1792x1024"
    PORTRAIT = "1024x1792"


DEFAULT_SIZE = ImageSize.SQUARE


class GenerateImageRequest(BaseModel):
    """
    Request body for POST /api/generate-image.

    `prompt` is optional at the schema level so that a missing prompt can be
    answered with the endpoint's own 400 message instead of a generic
    validation error.
    """
    prompt: Optional[str] = Field(None, description="Text to render as an image")
    size: ImageSize = Field(DEFAULT_SIZE, description="Output size as WxH")


class GenerateImageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(..., alias="imageUrl")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str
    kind: Optional[ErrorKind] = None
    details: Optional[Any] = None


class StatusResponse(BaseModel):
    status: str = "Server is running"
    port: int
