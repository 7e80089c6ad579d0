"""
Roastify catalog provider.

Fetches the company's own products from GET /products (cursor
pagination) and normalizes them:
- variant retailPrice is in cents and becomes major units
- product price comes from the first variant
- images = imageUrl first, then images[] without duplicates
- sku falls back to the first variant's sku, then the product id
"""

from typing import Any, Literal, Mapping, Optional

import requests
import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from config import settings
from exceptions import ExternalServiceError, ValidationError
from integrations.providers.base import CatalogProvider
from models.external_product import ExternalProduct, ExternalProductImage, ExternalProductVariant
from models.field_mapping import TransformName
from services.transform_engine import apply_simple_transform

logger = structlog.get_logger(__name__)

PROVIDER = "ROASTIFY"


# ===================
# RAW PAYLOAD
# ===================

class _RoastifyModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RoastifyImage(_RoastifyModel):
    id: Optional[str] = None
    url: Optional[str] = None
    alt_text: Optional[str] = None
    position: Optional[int] = None


class RoastifyVariant(_RoastifyModel):
    id: str
    sku: Optional[str] = None
    title: Optional[str] = None
    size: Optional[str] = None
    retail_price: Optional[int] = None
    stock_qty: Optional[int] = None
    in_stock: Optional[bool] = None


class RoastifyProduct(_RoastifyModel):
    """Product as returned by the Roastify API. Prices in cents."""

    provider: Literal["ROASTIFY"] = "ROASTIFY"
    id: str
    title: Optional[str] = None
    name: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    currency: Optional[str] = None
    price: Optional[int] = None
    image_url: Optional[str] = None
    images: list[RoastifyImage] = Field(default_factory=list)
    variants: list[RoastifyVariant] = Field(default_factory=list)
    product_type: Optional[str] = None
    roast_level: Optional[str] = None
    origin: Optional[str] = None
    created_at: Optional[str] = None


def cents_to_major(cents: Optional[int]) -> float:
    if cents is None:
        return 0.0
    return apply_simple_transform(cents, TransformName.CENTS_TO_DECIMAL)


def normalize_product(raw: RoastifyProduct) -> ExternalProduct:
    """Convert a Roastify product to ExternalProduct."""
    name = raw.title or raw.name or "Unnamed Product"

    images: list[ExternalProductImage] = []
    if raw.image_url:
        images.append(ExternalProductImage(
            id=f"{raw.id}-main",
            url=raw.image_url,
            alt_text=name,
            position=0,
        ))
    for index, image in enumerate(raw.images):
        if not image.url or image.url == raw.image_url:
            continue
        images.append(ExternalProductImage(
            id=image.id or f"{raw.id}-{index}",
            url=image.url,
            alt_text=image.alt_text or name,
            position=len(images),
        ))

    variants = [
        ExternalProductVariant(
            id=v.id,
            sku=v.sku or v.id,
            name=v.title or v.size or "Default",
            price=cents_to_major(v.retail_price),
            inventory=v.stock_qty or 0,
            in_stock=True if v.in_stock is None else v.in_stock,
        )
        for v in raw.variants
    ]

    first_variant = variants[0] if variants else None
    if first_variant is not None:
        price = first_variant.price or 0.0
    else:
        price = cents_to_major(raw.price)

    metadata = {
        "product_type": raw.product_type,
        "roast_level": raw.roast_level,
        "origin": raw.origin,
        "created_at": raw.created_at,
    }

    return ExternalProduct(
        id=raw.id,
        sku=raw.sku or (first_variant.sku if first_variant else None) or raw.id,
        name=name,
        description=raw.description or "",
        price=price,
        currency=raw.currency or "USD",
        images=images,
        variants=variants,
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


# ===================
# ADAPTER
# ===================

class RoastifyProvider(CatalogProvider):
    """Roastify REST API adapter."""

    provider = PROVIDER

    def __init__(
        self,
        base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        self.base_url = (base_url or settings.roastify_api_url).rstrip("/")
        self.page_size = page_size or settings.provider_page_size
        self.timeout = timeout or settings.provider_request_timeout_seconds
        self.session = session or requests.Session()

    def _api_key(self, credentials: Mapping[str, Any]) -> str:
        api_key = credentials.get("api_key") or credentials.get("apiKey")
        if not api_key:
            raise ValidationError(
                "Roastify credentials are missing api_key",
                code="INTEGRATION_CREDENTIALS_MISSING"
            )
        return api_key

    def _get_page(self, api_key: str, cursor: Optional[str]) -> dict:
        params: dict[str, Any] = {"pageSize": self.page_size}
        if cursor:
            params["cursor"] = cursor

        try:
            response = self.session.get(
                f"{self.base_url}/products",
                params=params,
                headers={"x-api-key": api_key, "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("roastify_request_failed", error=str(e))
            raise ExternalServiceError("roastify", f"Roastify request failed: {e}")

        if not response.ok:
            try:
                message = response.json().get("message") or response.reason
            except ValueError:
                message = response.reason
            logger.error("roastify_api_error", status_code=response.status_code, error=message)
            raise ExternalServiceError(
                "roastify",
                f"Roastify API error: {response.status_code} - {message}",
                details={"status_code": response.status_code}
            )

        return response.json()

    def fetch_raw(self, credentials: Mapping[str, Any]) -> list[RoastifyProduct]:
        """All raw products, following cursor pagination."""
        api_key = self._api_key(credentials)
        products: list[RoastifyProduct] = []
        cursor: Optional[str] = None
        seen_cursors: set[str] = set()

        while True:
            body = self._get_page(api_key, cursor)
            page = body.get("products") if isinstance(body, dict) else None
            if not isinstance(page, list):
                logger.warning("roastify_unexpected_response", body=str(body)[:200])
                break

            products.extend(RoastifyProduct.model_validate(item) for item in page)

            page_info = body.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not cursor or cursor in seen_cursors:
                break
            seen_cursors.add(cursor)

        logger.info("roastify_products_fetched", count=len(products))
        return products

    def fetch_all(self, credentials: Mapping[str, Any]) -> list[ExternalProduct]:
        return [normalize_product(raw) for raw in self.fetch_raw(credentials)]
