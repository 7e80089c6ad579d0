"""
Provider-normalized product schemas.

ExternalProduct is what every CatalogProvider hands to the import
pipeline. Prices are decimal major units (e.g. 12.5 for $12.50);
providers that report minor units convert at the adapter.
"""

from pydantic import Field
from typing import Any, Optional

from models.base import FrozenSchema


class ExternalProductImage(FrozenSchema):
    """Image reference on an external product."""

    id: Optional[str] = Field(None, description="Provider image ID")
    url: str = Field(..., description="Source image URL")
    alt_text: Optional[str] = Field(None, description="Alt text")
    position: int = Field(default=0, ge=0, description="Display order")


class ExternalProductVariant(FrozenSchema):
    """Variant of an external product."""

    id: str = Field(..., description="Provider variant ID")
    sku: Optional[str] = Field(None, description="Variant SKU")
    name: Optional[str] = Field(None, description="Variant name")
    price: Optional[float] = Field(None, description="Variant price in major units")
    inventory: Optional[int] = Field(None, description="Units on hand")
    in_stock: Optional[bool] = Field(None, description="Provider stock flag")


class ExternalProduct(FrozenSchema):
    """
    A product as fetched from a provider, after normalization.

    Immutable for the duration of a job run.
    """

    id: str = Field(..., description="Provider product ID (becomes external_id)")
    sku: str = Field(..., description="Product SKU")
    name: str = Field(..., description="Product name")
    description: Optional[str] = Field(None, description="Description (may contain HTML)")
    price: float = Field(default=0.0, description="Price in major units")
    currency: str = Field(default="USD", description="ISO currency code")
    images: list[ExternalProductImage] = Field(default_factory=list)
    variants: list[ExternalProductVariant] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        """Plain JSON-like tree used by mapping, conditions and templates."""
        return self.model_dump(mode="json")
