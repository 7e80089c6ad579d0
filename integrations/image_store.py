"""
Image storage backends for imported product images.

ImageStore is the upload capability the image import flow depends on.
SupabaseImageStore writes to a Supabase Storage bucket and derives
thumbnail URLs from the bucket's image transformation endpoint.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog
from supabase import Client, create_client

from config import get_admin_client
from exceptions import ExternalServiceError
from models.product_image import StorageCredentials, ThumbnailUrls, UploadResult

logger = structlog.get_logger(__name__)

# Thumbnail edge length in pixels
THUMBNAIL_SIZES = {
    "small": 150,
    "medium": 400,
    "large": 800,
}


class ImageStore(ABC):
    """Abstract base class for image storage backends."""

    @abstractmethod
    def upload(
        self,
        credentials: StorageCredentials,
        data: bytes,
        filename: str,
        content_type: str,
        metadata: dict[str, str],
        generate_thumbnails: bool = True
    ) -> UploadResult:
        """
        Store one image.

        Args:
            credentials: Resolved storage credentials
            data: Image bytes
            filename: File name including extension
            content_type: MIME type of data
            metadata: Provenance (productId, importJobId, originalUrl, ...)
            generate_thumbnails: Also produce thumbnail URLs

        Returns:
            UploadResult

        Raises:
            ExternalServiceError: If the upload fails
        """
        pass


class SupabaseImageStore(ImageStore):
    """Supabase Storage backend."""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    def _client_for(self, credentials: StorageCredentials) -> Client:
        if self._client is not None:
            return self._client

        url = credentials.settings.get("supabase_url")
        key = credentials.settings.get("service_key")
        if url and key:
            return create_client(url, key)

        client = get_admin_client()
        if client is None:
            raise ExternalServiceError("storage", "No storage client configured")
        return client

    @staticmethod
    def _object_key(credentials: StorageCredentials, metadata: dict[str, str], filename: str) -> str:
        prefix = credentials.settings.get("key_prefix", "")
        folder = metadata.get("folder", "product-images")
        product_id = metadata.get("productId", "unassigned")
        unique_id = str(uuid.uuid4())[:8]
        return f"{prefix}{folder}/{product_id}/{unique_id}_{filename}"

    def upload(
        self,
        credentials: StorageCredentials,
        data: bytes,
        filename: str,
        content_type: str,
        metadata: dict[str, str],
        generate_thumbnails: bool = True
    ) -> UploadResult:
        key = self._object_key(credentials, metadata, filename)
        bucket = self._client_for(credentials).storage.from_(credentials.bucket)

        logger.debug(
            "uploading_image_to_storage",
            bucket=credentials.bucket,
            key=key,
            size_bytes=len(data)
        )

        try:
            bucket.upload(
                key,
                data,
                file_options={"content-type": content_type, "upsert": "true"}
            )
            url = bucket.get_public_url(key)
        except Exception as e:
            logger.error("image_upload_failed", key=key, error=str(e))
            raise ExternalServiceError("storage", f"Failed to upload image: {e}")

        thumbnails = None
        if generate_thumbnails:
            thumbnails = ThumbnailUrls(**{
                name: self._thumbnail_url(bucket, key, size)
                for name, size in THUMBNAIL_SIZES.items()
            })

        cdn_domain = credentials.settings.get("cdn_domain")
        cdn_url = f"https://{cdn_domain}/{key}" if cdn_domain else None

        logger.info("image_uploaded_to_storage", key=key, thumbnails=thumbnails is not None)

        return UploadResult(
            url=url,
            cdn_url=cdn_url,
            key=key,
            content_type=content_type,
            size=len(data),
            thumbnails=thumbnails,
        )

    @staticmethod
    def _thumbnail_url(bucket: Any, key: str, size: int) -> Optional[str]:
        try:
            return bucket.get_public_url(
                key,
                {"transform": {"width": size, "height": size, "resize": "contain"}}
            )
        except Exception as e:
            logger.warning("thumbnail_url_failed", key=key, size=size, error=str(e))
            return None


# Singleton instance
_image_store: Optional[ImageStore] = None


def get_image_store() -> ImageStore:
    """Get or create the image store."""
    global _image_store
    if _image_store is None:
        _image_store = SupabaseImageStore()
    return _image_store
