"""
Catalog store.

Persistence of catalog products and their images as used by the import
pipeline. CatalogStore is the capability; SupabaseCatalogStore is the
Supabase-backed implementation.

Image replacement runs through the replace_product_images Postgres
function so the delete and insert commit in one transaction.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
import structlog
from pydantic_core import to_jsonable_python

from config import get_supabase_client
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)

# PostgREST caps a single select
PAGE_SIZE = 1000


class CatalogStore(ABC):
    """Product persistence used by the import pipeline."""

    @abstractmethod
    def find_existing_by_company(self, company_id: str) -> list[dict]:
        """Rows of {id, sku, external_id, import_source} for every company product."""

    @abstractmethod
    def create_product(self, fields: dict[str, Any]) -> dict:
        """Insert a product. Returns the stored row (with id)."""

    @abstractmethod
    def update_product(self, product_id: str, fields: dict[str, Any]) -> dict:
        """Update a product. Returns the stored row."""

    @abstractmethod
    def find_product_by_id(self, product_id: str) -> Optional[dict]:
        """Full product row, or None."""

    @abstractmethod
    def replace_product_images(self, product_id: str, images: list[dict[str, Any]]) -> None:
        """Delete every image of the product and insert `images`, atomically."""

    @abstractmethod
    def list_product_image_urls(self, product_id: str) -> list[str]:
        """Stored image URLs of a product, by position."""


class SupabaseCatalogStore(CatalogStore):
    """
    Supabase tables: products, product_images.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "products"
        self.images_table = "product_images"

    # ===================
    # PRODUCTS
    # ===================

    def find_existing_by_company(self, company_id: str) -> list[dict]:
        logger.debug("loading_existing_products", company_id=company_id)

        rows: list[dict] = []
        offset = 0
        try:
            while True:
                result = (
                    self.db.table(self.table)
                    .select("id, sku, external_id, import_source")
                    .eq("company_id", company_id)
                    .range(offset, offset + PAGE_SIZE - 1)
                    .execute()
                )
                rows.extend(result.data)
                if len(result.data) < PAGE_SIZE:
                    break
                offset += PAGE_SIZE
        except Exception as e:
            logger.error("load_existing_products_failed", company_id=company_id, error=str(e))
            raise DatabaseError("select", str(e))

        logger.info("existing_products_loaded", company_id=company_id, count=len(rows))
        return rows

    def create_product(self, fields: dict[str, Any]) -> dict:
        try:
            result = self.db.table(self.table).insert(to_jsonable_python(fields)).execute()
        except Exception as e:
            logger.error("create_product_failed", sku=fields.get("sku"), error=str(e))
            raise DatabaseError("insert", str(e))

        if not result.data:
            raise DatabaseError("insert", "No data returned from insert")

        return result.data[0]

    def update_product(self, product_id: str, fields: dict[str, Any]) -> dict:
        try:
            result = (
                self.db.table(self.table)
                .update(to_jsonable_python(fields))
                .eq("id", product_id)
                .execute()
            )
        except Exception as e:
            logger.error("update_product_failed", product_id=product_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            raise DatabaseError("update", f"Product {product_id} not updated")

        return result.data[0]

    def find_product_by_id(self, product_id: str) -> Optional[dict]:
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", product_id)
                .execute()
            )
        except Exception as e:
            logger.error("find_product_failed", product_id=product_id, error=str(e))
            raise DatabaseError("select", str(e))

        return result.data[0] if result.data else None

    # ===================
    # IMAGES
    # ===================

    def replace_product_images(self, product_id: str, images: list[dict[str, Any]]) -> None:
        try:
            self.db.rpc(
                "replace_product_images",
                {"p_product_id": product_id, "p_images": images}
            ).execute()
        except Exception as e:
            logger.error("replace_product_images_failed", product_id=product_id, error=str(e))
            raise DatabaseError("replace_images", str(e))

        logger.debug("product_images_replaced", product_id=product_id, count=len(images))

    def list_product_image_urls(self, product_id: str) -> list[str]:
        try:
            result = (
                self.db.table(self.images_table)
                .select("url, position")
                .eq("product_id", product_id)
                .order("position")
                .execute()
            )
        except Exception as e:
            logger.error("list_product_images_failed", product_id=product_id, error=str(e))
            raise DatabaseError("select", str(e))

        return [row["url"] for row in result.data if row.get("url")]


# Singleton instance
_catalog_store: Optional[CatalogStore] = None


def get_catalog_store() -> CatalogStore:
    """Get or create the catalog store."""
    global _catalog_store
    if _catalog_store is None:
        _catalog_store = SupabaseCatalogStore()
    return _catalog_store
