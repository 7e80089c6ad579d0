"""
Product image schemas used by the image import flow.
"""

from pydantic import BaseModel, Field
from typing import Any, Optional

from models.base import FrozenSchema


class ThumbnailUrls(FrozenSchema):
    """Thumbnail variants produced by the image store."""
    small: Optional[str] = None
    medium: Optional[str] = None
    large: Optional[str] = None


class UploadResult(FrozenSchema):
    """What the image store returns for one uploaded object."""

    url: str
    cdn_url: Optional[str] = None
    key: str
    content_type: str = "image/jpeg"
    size: int = Field(default=0, ge=0)
    thumbnails: Optional[ThumbnailUrls] = None


class DownloadedImage(FrozenSchema):
    """Image bytes fetched under the download policy."""

    data: bytes
    content_type: str
    filename: str


class ImageImportResult(BaseModel):
    """Outcome of importing one source image."""

    success: bool
    original_url: str
    position: int = 0
    alt_text: Optional[str] = None
    upload: Optional[UploadResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class ImageImportProgress(FrozenSchema):
    """Per-image progress reported while a product's images import."""

    processed: int
    total: int
    current_image: Optional[str] = None


class StorageCredentials(FrozenSchema):
    """Resolved object-storage credentials and where they came from."""

    source: str = Field(..., description="'client' or 'platform'")
    integration_id: Optional[str] = None
    bucket: str
    settings: dict[str, Any] = Field(default_factory=dict)
