"""
Image import service.

Downloads product images from provider URLs, stores them through the
ImageStore and records them on the product.

Download policy (checked before any request is made):
1. https only
2. host must be present
3. cloud metadata hosts are rejected
4. IP literals must be public (no private, loopback, link-local,
   multicast, reserved or unspecified addresses)
5. host must be on the allowlist (exact match or subdomain)
6. every address the host resolves to must pass rule 4

Responses are read with redirects disabled, a byte ceiling, a minimum
plausible size and an image/* content type.

A product's images are replaced in one transaction, then the product's
image list is re-read from the image rows.
"""

import ipaddress
import os
import socket
from typing import Callable, Iterable, Optional
from urllib.parse import urlparse

import requests
import structlog

from config import settings
from integrations.image_store import ImageStore, get_image_store
from models.external_product import ExternalProductImage
from models.import_job import ImportErrorCode
from models.product_image import (
    DownloadedImage,
    ImageImportProgress,
    ImageImportResult,
    StorageCredentials,
)
from services.catalog_store import CatalogStore, get_catalog_store
from exceptions import ImageDownloadError, UnsafeImageUrlError
from utils.text_utils import slugify

logger = structlog.get_logger(__name__)

METADATA_HOSTS = {
    "metadata",
    "metadata.google.internal",
    "metadata.azure.com",
    "169.254.169.254",
    "169.254.170.2",
    "100.100.100.200",
    "fd00:ec2::254",
}

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/avif": ".avif",
    "image/svg+xml": ".svg",
}

UPLOAD_FOLDER = "product-images"
CHUNK_SIZE = 64 * 1024

Resolver = Callable[[str], list[str]]


def resolve_host(host: str) -> list[str]:
    """Addresses a host name resolves to."""
    infos = socket.getaddrinfo(host, 443, proto=socket.IPPROTO_TCP)
    return sorted({info[4][0] for info in infos})


def _ip_rejection(address: str) -> Optional[str]:
    """Why an IP may not be fetched from, or None if it is public."""
    ip = ipaddress.ip_address(address)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    if ip.is_loopback:
        return "loopback address"
    if ip.is_link_local:
        return "link-local address"
    if ip.is_multicast:
        return "multicast address"
    if ip.is_unspecified:
        return "unspecified address"
    if ip.is_reserved:
        return "reserved address"
    if ip.is_private:
        return "private address"
    return None


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


def _host_allowed(host: str, allowed_domains: Iterable[str]) -> bool:
    for domain in allowed_domains:
        domain = domain.lower().strip(".")
        if host == domain or host.endswith("." + domain):
            return True
    return False


def check_image_url(
    url: str,
    allowed_domains: Optional[Iterable[str]] = None,
    resolver: Resolver = resolve_host
) -> str:
    """
    Apply the download policy to a URL.

    Returns:
        The lowercase host

    Raises:
        UnsafeImageUrlError: If any rule rejects the URL
    """
    if allowed_domains is None:
        allowed_domains = settings.image_allowed_domains

    try:
        parsed = urlparse(url or "")
        host = (parsed.hostname or "").lower().rstrip(".")
    except ValueError as e:
        raise UnsafeImageUrlError(url, f"malformed URL: {e}")

    if parsed.scheme.lower() != "https":
        raise UnsafeImageUrlError(url, "only https URLs are allowed")

    if not host:
        raise UnsafeImageUrlError(url, "URL has no host")

    if host in METADATA_HOSTS:
        raise UnsafeImageUrlError(url, "cloud metadata host")

    if _is_ip_literal(host):
        reason = _ip_rejection(host)
        if reason:
            raise UnsafeImageUrlError(url, reason)

    if not _host_allowed(host, allowed_domains):
        raise UnsafeImageUrlError(url, f"host {host} is not on the allowlist")

    try:
        addresses = [host] if _is_ip_literal(host) else resolver(host)
    except (OSError, UnicodeError) as e:
        raise UnsafeImageUrlError(url, f"host could not be resolved: {e}")

    if not addresses:
        raise UnsafeImageUrlError(url, "host could not be resolved")

    for address in addresses:
        if address in METADATA_HOSTS:
            raise UnsafeImageUrlError(url, "host resolves to a cloud metadata address")
        reason = _ip_rejection(address)
        if reason:
            raise UnsafeImageUrlError(url, f"host resolves to a {reason}")

    return host


def extension_for(content_type: str) -> str:
    return EXTENSIONS.get(content_type, ".jpg")


def image_filename(url: str, position: int, content_type: str) -> str:
    """Storage filename: the URL's file stem (slugified) plus an extension from the content type."""
    stem = os.path.splitext(os.path.basename(urlparse(url).path))[0]
    stem = slugify(stem, max_length=60) or f"image_{position}"
    return f"{stem}{extension_for(content_type)}"


class ImageImportService:
    """
    Downloads, stores and records product images.

    One product's images are processed sequentially.
    """

    def __init__(
        self,
        image_store: Optional[ImageStore] = None,
        catalog_store: Optional[CatalogStore] = None,
        session: Optional[requests.Session] = None,
        resolver: Resolver = resolve_host
    ):
        self.image_store = image_store or get_image_store()
        self.catalog_store = catalog_store or get_catalog_store()
        self.session = session or requests.Session()
        self.resolver = resolver

    # ===================
    # DOWNLOAD
    # ===================

    def download(self, url: str, position: int = 0) -> DownloadedImage:
        """
        Fetch one image under the download policy.

        Raises:
            UnsafeImageUrlError: If the URL is rejected (no request made)
            ImageDownloadError: If the response is not a usable image
        """
        check_image_url(url, resolver=self.resolver)

        try:
            with self.session.get(
                url,
                stream=True,
                timeout=settings.image_download_timeout_seconds,
                allow_redirects=False,
                headers={"Accept": "image/*"},
            ) as response:
                if response.is_redirect:
                    raise ImageDownloadError("Redirects are not followed", url=url)
                if not response.ok:
                    raise ImageDownloadError(f"HTTP {response.status_code}", url=url)

                content_type = (response.headers.get("Content-Type") or "").split(";")[0].strip().lower()
                if not content_type.startswith("image/"):
                    raise ImageDownloadError(f"Invalid content type: {content_type or 'unknown'}", url=url)

                declared = response.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > settings.image_max_bytes:
                    raise ImageDownloadError("Image exceeds maximum size", url=url)

                data = bytearray()
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    data.extend(chunk)
                    if len(data) > settings.image_max_bytes:
                        raise ImageDownloadError("Image exceeds maximum size", url=url)

        except requests.exceptions.Timeout:
            raise ImageDownloadError("Download timeout", url=url)
        except requests.exceptions.RequestException as e:
            raise ImageDownloadError(f"Download failed: {e}", url=url)

        if len(data) < settings.image_min_bytes:
            raise ImageDownloadError("Image file too small or corrupted", url=url)

        return DownloadedImage(
            data=bytes(data),
            content_type=content_type,
            filename=image_filename(url, position, content_type),
        )

    # ===================
    # IMPORT
    # ===================

    def import_image(
        self,
        image: ExternalProductImage,
        index: int,
        product_id: str,
        job_id: str,
        credentials: StorageCredentials,
        generate_thumbnails: bool = True
    ) -> ImageImportResult:
        """Download and upload one image. Failures are returned, not raised."""
        position = image.position if image.position is not None else index
        result = dict(original_url=image.url, position=position, alt_text=image.alt_text)

        try:
            downloaded = self.download(image.url, position)
        except (UnsafeImageUrlError, ImageDownloadError) as e:
            logger.warning("image_download_failed", product_id=product_id, url=image.url, error=e.message)
            return ImageImportResult(
                success=False,
                error=e.message,
                error_code=ImportErrorCode.IMAGE_DOWNLOAD_FAILED.value,
                **result
            )

        metadata = {
            "productId": product_id,
            "importJobId": job_id,
            "originalUrl": image.url,
            "altText": image.alt_text or "",
            "position": str(position),
            "folder": UPLOAD_FOLDER,
        }

        try:
            upload = self.image_store.upload(
                credentials,
                downloaded.data,
                downloaded.filename,
                downloaded.content_type,
                metadata,
                generate_thumbnails=generate_thumbnails,
            )
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            logger.warning("image_upload_failed", product_id=product_id, url=image.url, error=message)
            return ImageImportResult(
                success=False,
                error=message,
                error_code=ImportErrorCode.IMAGE_UPLOAD_FAILED.value,
                **result
            )

        return ImageImportResult(success=True, upload=upload, **result)

    def import_product_images(
        self,
        images: list[ExternalProductImage],
        product_id: str,
        job_id: str,
        credentials: StorageCredentials,
        generate_thumbnails: bool = True,
        on_progress: Optional[Callable[[ImageImportProgress], None]] = None
    ) -> list[ImageImportResult]:
        """
        Import every image of one product, in order.

        on_progress receives a fresh snapshot after each image.
        """
        results: list[ImageImportResult] = []
        total = len(images)

        for index, image in enumerate(images):
            results.append(
                self.import_image(image, index, product_id, job_id, credentials, generate_thumbnails)
            )
            if on_progress is not None:
                on_progress(ImageImportProgress(processed=index + 1, total=total, current_image=image.url))

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            "product_images_imported",
            product_id=product_id,
            total=total,
            succeeded=succeeded,
            failed=total - succeeded
        )
        return results

    def update_product_images(
        self,
        product_id: str,
        results: list[ImageImportResult],
        import_source: Optional[str] = None
    ) -> list[str]:
        """
        Replace the product's image rows with the successful uploads.

        Does nothing when no image succeeded. The product's image list is
        read back from the stored rows.

        Returns:
            Stored image URLs
        """
        succeeded = [r for r in results if r.success and r.upload is not None]
        if not succeeded:
            logger.debug("no_images_to_record", product_id=product_id)
            return []

        rows = []
        for position, result in enumerate(succeeded):
            upload = result.upload
            rows.append({
                "product_id": product_id,
                "url": upload.cdn_url or upload.url,
                "storage_key": upload.key,
                "alt_text": result.alt_text,
                "position": position,
                "is_primary": position == 0,
                "content_type": upload.content_type,
                "size": upload.size,
                "thumbnails": upload.thumbnails.model_dump() if upload.thumbnails else None,
                "original_url": result.original_url,
                "import_source": import_source,
            })

        self.catalog_store.replace_product_images(product_id, rows)

        urls = self.catalog_store.list_product_image_urls(product_id)
        self.catalog_store.update_product(product_id, {"images": urls})

        logger.info("product_images_recorded", product_id=product_id, count=len(urls))
        return urls


# Singleton instance
_image_import_service: Optional[ImageImportService] = None


def get_image_import_service() -> ImageImportService:
    """Get or create ImageImportService instance."""
    global _image_import_service
    if _image_import_service is None:
        _image_import_service = ImageImportService()
    return _image_import_service
