"""
Test data factories.

Uses factory pattern to generate consistent test data.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from models.external_product import ExternalProduct, ExternalProductImage, ExternalProductVariant
from models.import_job import ImportJobConfig, ImportJobPayload


class ExternalProductFactory:
    """
    Factory for normalized provider products.

    Usage:
        # Create with defaults
        product = ExternalProductFactory.create()

        # Create with overrides
        product = ExternalProductFactory.create(sku="ETH-250", price=14.5)

        # Create multiple
        products = ExternalProductFactory.create_batch(5)
    """

    _counter = 0

    @classmethod
    def _next_counter(cls) -> int:
        cls._counter += 1
        return cls._counter

    @classmethod
    def create(
        cls,
        id: Optional[str] = None,
        sku: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = "Smooth and balanced",
        price: float = 12.5,
        currency: str = "USD",
        image_urls: Optional[list[str]] = None,
        variants: Optional[list[dict]] = None,
        metadata: Optional[dict] = None
    ) -> ExternalProduct:
        """
        Create a single product.

        Args:
            id: Provider product ID (auto-generated if not provided)
            sku: Product SKU (auto-generated if not provided)
            name: Product name (auto-generated if not provided)
            image_urls: Image URLs, in position order

        Returns:
            ExternalProduct
        """
        counter = cls._next_counter()
        return ExternalProduct(
            id=id or f"ext-{counter}",
            sku=sku if sku is not None else f"SKU-{counter}",
            name=name if name is not None else f"Test Coffee {counter}",
            description=description,
            price=price,
            currency=currency,
            images=[
                ExternalProductImage(url=url, position=position)
                for position, url in enumerate(image_urls or [])
            ],
            variants=[ExternalProductVariant(**v) for v in (variants or [])],
            metadata=metadata or {},
        )

    @classmethod
    def create_batch(cls, count: int, **overrides) -> list[ExternalProduct]:
        return [cls.create(**overrides) for _ in range(count)]


class ImportJobFactory:
    """
    Factory for product_import_jobs rows and runner payloads.

    Usage:
        row = ImportJobFactory.create_row(status="IN_PROGRESS")
        payload = ImportJobFactory.payload(row)
    """

    @classmethod
    def config(cls, **overrides) -> ImportJobConfig:
        data = {
            "provider": "ROASTIFY",
            "integration_id": "integration-uuid-1",
            "import_images": False,
            "generate_thumbnails": False,
        }
        data.update(overrides)
        return ImportJobConfig(**data)

    @classmethod
    def create_row(
        cls,
        id: Optional[str] = None,
        company_id: str = "company-uuid-1",
        client_id: str = "client-uuid-1",
        status: str = "PENDING",
        phase: str = "QUEUED",
        config: Optional[ImportJobConfig] = None,
        created_at: Optional[str] = None,
        **fields
    ) -> dict:
        """
        Create a job row dict matching the database schema.
        """
        config = config or cls.config()
        row = {
            "id": id or str(uuid4()),
            "company_id": company_id,
            "client_id": client_id,
            "integration_id": config.integration_id,
            "provider": config.provider,
            "status": status,
            "phase": phase,
            "progress": 0,
            "total_products": 0,
            "processed_products": 0,
            "total_images": 0,
            "processed_images": 0,
            "imported_count": 0,
            "skipped_count": 0,
            "error_count": 0,
            "current_item": None,
            "estimated_seconds_remaining": None,
            "error_log": None,
            "imported_ids": [],
            "config": config.to_storage(),
            "created_by": "user-uuid-1",
            "created_at": created_at or datetime.now(timezone.utc).isoformat(),
            "started_at": None,
            "completed_at": None,
        }
        row.update(fields)
        return row

    @classmethod
    def payload(cls, row: dict) -> ImportJobPayload:
        config = ImportJobConfig.model_validate(row["config"])
        return ImportJobPayload(
            job_id=row["id"],
            company_id=row["company_id"],
            client_id=row["client_id"],
            integration_id=config.integration_id,
            provider=config.provider,
            config=config,
        )


class ProductRowFactory:
    """Factory for products table rows."""

    @classmethod
    def create(
        cls,
        id: Optional[str] = None,
        company_id: str = "company-uuid-1",
        sku: str = "SKU-EXISTING",
        external_id: Optional[str] = None,
        import_source: Optional[str] = None,
        **fields
    ) -> dict:
        row = {
            "id": id or str(uuid4()),
            "company_id": company_id,
            "sku": sku,
            "name": "Existing Product",
            "description": "",
            "price": 10.0,
            "currency": "USD",
            "external_id": external_id,
            "import_source": import_source,
            "custom_fields": None,
            "status": "ACTIVE",
        }
        row.update(fields)
        return row


class FieldMappingProfileFactory:
    """Factory for field_mapping_profiles rows."""

    @classmethod
    def create_row(
        cls,
        id: Optional[str] = None,
        company_id: str = "company-uuid-1",
        provider: str = "ROASTIFY",
        name: str = "Default profile",
        mappings: Optional[list[dict]] = None,
        is_default: bool = False,
        created_at: Optional[str] = None
    ) -> dict:
        return {
            "id": id or str(uuid4()),
            "company_id": company_id,
            "provider": provider,
            "name": name,
            "mappings": mappings or [{"source_field": "name", "target_field": "name"}],
            "is_default": is_default,
            "created_by": None,
            "created_at": created_at or "2025-01-01T00:00:00+00:00",
            "updated_at": None,
        }
