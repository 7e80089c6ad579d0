"""
Field mapping service.

Turns a source record into a target record using an ordered list of
field mappings. For each mapping:

1. Evaluate its condition against the SOURCE record. If it fails, the
   default value (when one was given) is written and nothing else runs.
2. Read the source value by dot path, falling back to the default when
   the value is null or missing.
3. Apply the transform chain.
4. Validate the transformed value. Errors are collected, never blocking.
5. Write the value to the target field.

Pure: no database or network access.
"""

from typing import Any, Iterable, Optional, Union

import structlog

from models.external_product import ExternalProduct
from models.field_mapping import FieldMapping, MappingResult, ValidationResult, FieldValidationError
from services.condition_evaluator import evaluate_condition
from services.transform_engine import apply_transforms
from services.validation_engine import validate_field
from utils.dot_path import get_path, MISSING

logger = structlog.get_logger(__name__)

SourceRecord = Union[ExternalProduct, dict]

ROASTIFY = "ROASTIFY"


def _as_record(source: SourceRecord) -> dict:
    if isinstance(source, ExternalProduct):
        return source.to_record()
    return source


def _as_mapping(mapping: Union[FieldMapping, dict]) -> FieldMapping:
    if isinstance(mapping, FieldMapping):
        return mapping
    return FieldMapping.model_validate(mapping)


class FieldMappingService:
    """
    Applies field mappings to source records.

    Stateless. One instance can be shared between jobs and threads.
    """

    # ===================
    # MAPPING
    # ===================

    def apply_mappings(
        self,
        source: SourceRecord,
        mappings: Iterable[Union[FieldMapping, dict]]
    ) -> MappingResult:
        """
        Apply mappings to one source record.

        Args:
            source: ExternalProduct or an equivalent dict tree
            mappings: Ordered mapping rules

        Returns:
            MappingResult with the target record and aggregated validation
        """
        record = _as_record(source)
        data: dict[str, Any] = {}
        errors: list[FieldValidationError] = []

        for raw in mappings:
            mapping = _as_mapping(raw)

            if mapping.condition is not None and not evaluate_condition(record, mapping.condition):
                if mapping.has_default:
                    data[mapping.target_field] = mapping.default_value
                continue

            value = get_path(record, mapping.source_field)
            if (value is MISSING or value is None) and mapping.has_default:
                value = mapping.default_value
            if value is MISSING:
                value = None

            if mapping.transform is not None:
                value = apply_transforms(value, mapping.transform, record)

            if mapping.validation:
                errors.extend(validate_field(mapping.target_field, value, mapping.validation))

            data[mapping.target_field] = value

        return MappingResult(
            data=data,
            validation=ValidationResult(is_valid=not errors, errors=errors),
        )

    def validate_batch(
        self,
        products: Iterable[SourceRecord],
        mappings: list[Union[FieldMapping, dict]]
    ) -> list[tuple[SourceRecord, ValidationResult]]:
        """Validation result per product, in input order."""
        resolved = [_as_mapping(m) for m in mappings]
        return [
            (product, self.apply_mappings(product, resolved).validation)
            for product in products
        ]

    # ===================
    # DEFAULTS & DISCOVERY
    # ===================

    def default_mappings(self, provider: Optional[str] = None) -> list[FieldMapping]:
        """
        Built-in mappings for a provider.

        Prices arrive already normalized to major units from the provider
        adapter, so no price transform is applied here.
        """
        description_transform = "strip_html" if (provider or "").upper() == ROASTIFY else "trim"
        return [
            FieldMapping(source_field="name", target_field="name", transform="trim"),
            FieldMapping(source_field="sku", target_field="sku", transform="uppercase"),
            FieldMapping(source_field="price", target_field="price"),
            FieldMapping(source_field="description", target_field="description", transform=description_transform),
            FieldMapping(source_field="currency", target_field="currency"),
        ]

    def available_source_fields(self, products: list[ExternalProduct]) -> list[str]:
        """
        Source fields that carry data, sampled from the first product.

        Metadata keys are offered as "metadata.<key>" dot paths.
        """
        if not products:
            return []

        sample = products[0]
        fields = set()

        if sample.name:
            fields.add("name")
        if sample.sku:
            fields.add("sku")
        if sample.description:
            fields.add("description")
        fields.add("price")
        if sample.currency:
            fields.add("currency")
        if sample.images:
            fields.add("images")
        if sample.variants:
            fields.add("variants")

        for key, value in sample.metadata.items():
            if value is not None:
                fields.add(f"metadata.{key}")

        return sorted(fields)

    def suggested_mappings(self, provider: str, available_fields: list[str]) -> list[FieldMapping]:
        """Default mappings, keeping only those whose source field has data."""
        available = set(available_fields)
        return [m for m in self.default_mappings(provider) if m.source_field in available]


# Singleton instance
_field_mapping_service: Optional[FieldMappingService] = None


def get_field_mapping_service() -> FieldMappingService:
    """Get or create FieldMappingService instance."""
    global _field_mapping_service
    if _field_mapping_service is None:
        _field_mapping_service = FieldMappingService()
    return _field_mapping_service
