"""
Unit tests for FieldMappingService and dot-path access.

Run: pytest tests/unit/test_field_mapping_service.py -v
"""

import pytest

from services.field_mapping_service import FieldMappingService, get_field_mapping_service
from models.field_mapping import FieldMapping
from utils.dot_path import MISSING, get_path, get_value, has_path
from utils.text_utils import product_slug, slugify

from tests.factories import ExternalProductFactory


@pytest.fixture
def service():
    return FieldMappingService()


@pytest.fixture
def product():
    return ExternalProductFactory.create(
        id="rst-1",
        sku="eth-250",
        name="  Ethiopia Kochere  ",
        description="<p>Floral and bright</p>",
        price=14.5,
        image_urls=["https://cdn.roastify.app/a.jpg"],
        metadata={"origin": "Ethiopia", "roast_level": "light", "altitude": None},
    )


# ===================
# DOT PATH
# ===================

class TestDotPath:
    """Tests for utils.dot_path"""

    def test_nested_and_indexed_paths(self):
        tree = {"metadata": {"origin": "Kenya"}, "images": [{"url": "u0"}, {"url": "u1"}]}

        assert get_path(tree, "metadata.origin") == "Kenya"
        assert get_path(tree, "images.1.url") == "u1"

    def test_missing_is_distinct_from_null(self):
        tree = {"a": None}

        assert get_path(tree, "a") is None
        assert get_path(tree, "b") is MISSING
        assert get_path(tree, "a.b") is MISSING
        assert get_path(tree, "") is MISSING

    def test_out_of_range_index_is_missing(self):
        assert get_path({"images": []}, "images.0") is MISSING
        assert get_path({"name": "abc"}, "name.0") is MISSING

    def test_helpers(self):
        assert get_value({"a": 1}, "b", default=7) == 7
        assert has_path({"a": {"b": 0}}, "a.b") is True


# ===================
# APPLY MAPPINGS
# ===================

class TestApplyMappings:
    """Tests for FieldMappingService.apply_mappings()"""

    def test_maps_and_transforms(self, service, product):
        mappings = [
            FieldMapping(source_field="name", target_field="name", transform="trim"),
            FieldMapping(source_field="sku", target_field="sku", transform="uppercase"),
            FieldMapping(source_field="metadata.origin", target_field="origin"),
        ]

        result = service.apply_mappings(product, mappings)

        assert result.data == {"name": "Ethiopia Kochere", "sku": "ETH-250", "origin": "Ethiopia"}
        assert result.validation.is_valid is True

    def test_accepts_dict_mappings_and_dict_source(self, service):
        result = service.apply_mappings({"title": "Kenya AA"}, [{"source_field": "title", "target_field": "name"}])
        assert result.data == {"name": "Kenya AA"}

    def test_default_used_for_missing_or_null(self, service, product):
        mappings = [
            FieldMapping(source_field="metadata.process", target_field="process", default_value="washed"),
            FieldMapping(source_field="metadata.altitude", target_field="altitude", default_value=1800),
        ]

        result = service.apply_mappings(product, mappings)

        assert result.data == {"process": "washed", "altitude": 1800}

    def test_missing_without_default_maps_to_none(self, service, product):
        result = service.apply_mappings(product, [FieldMapping(source_field="metadata.process", target_field="process")])
        assert result.data == {"process": None}

    def test_explicit_none_default_is_a_default(self, service, product):
        """A default of None still counts as supplied when the condition fails."""
        mapping = FieldMapping(
            source_field="name",
            target_field="tagline",
            default_value=None,
            condition={"type": "simple", "rule": {"field": "price", "operator": "greater_than", "value": 100}},
        )

        result = service.apply_mappings(product, [mapping])

        assert "tagline" in result.data
        assert result.data["tagline"] is None

    def test_failed_condition_without_default_skips_field(self, service, product):
        mapping = FieldMapping(
            source_field="name",
            target_field="tagline",
            condition={"type": "simple", "rule": {"field": "price", "operator": "greater_than", "value": 100}},
        )

        result = service.apply_mappings(product, [mapping])

        assert "tagline" not in result.data

    def test_condition_reads_source_not_target(self, service, product):
        """Conditions see the raw record even after earlier mappings ran."""
        mappings = [
            FieldMapping(source_field="sku", target_field="sku", transform="uppercase"),
            FieldMapping(
                source_field="sku",
                target_field="lower_sku_seen",
                condition={"type": "simple", "rule": {"field": "sku", "operator": "equals", "value": "eth-250"}},
            ),
        ]

        result = service.apply_mappings(product, mappings)

        assert result.data["lower_sku_seen"] == "eth-250"

    def test_validation_errors_are_collected_not_blocking(self, service, product):
        mappings = [
            FieldMapping(source_field="metadata.process", target_field="process", validation=[{"type": "required"}]),
            FieldMapping(source_field="price", target_field="price", validation=[{"type": "max", "value": 10}]),
            FieldMapping(source_field="name", target_field="name", transform="trim"),
        ]

        result = service.apply_mappings(product, mappings)

        assert result.validation.is_valid is False
        assert [e.field for e in result.validation.errors] == ["process", "price"]
        assert result.data["name"] == "Ethiopia Kochere"
        assert result.data["price"] == 14.5

    def test_template_transform_uses_whole_record(self, service, product):
        mapping = FieldMapping(
            source_field="name",
            target_field="title",
            transform=[{"type": "template", "options": {"template": "{{metadata.origin}} - {{sku}}"}}],
        )

        result = service.apply_mappings(product, [mapping])

        assert result.data["title"] == "Ethiopia - eth-250"

    def test_later_mapping_overwrites_same_target(self, service, product):
        mappings = [
            FieldMapping(source_field="name", target_field="name"),
            FieldMapping(source_field="sku", target_field="name"),
        ]
        assert service.apply_mappings(product, mappings).data == {"name": "eth-250"}


class TestValidateBatch:
    """Tests for FieldMappingService.validate_batch()"""

    def test_returns_results_in_input_order(self, service):
        products = [
            ExternalProductFactory.create(name="Valid"),
            ExternalProductFactory.create(name=""),
        ]
        mappings = [{"source_field": "name", "target_field": "name", "validation": [{"type": "required"}]}]

        results = service.validate_batch(products, mappings)

        assert [r.is_valid for _, r in results] == [True, False]
        assert results[1][0] is products[1]


# ===================
# DEFAULTS & DISCOVERY
# ===================

class TestDefaultsAndDiscovery:
    """Tests for default and suggested mappings."""

    def test_roastify_defaults_strip_html_without_price_transform(self, service, product):
        mappings = service.default_mappings("roastify")

        result = service.apply_mappings(product, mappings)

        assert result.data["description"] == "Floral and bright"
        assert result.data["price"] == 14.5
        assert result.data["sku"] == "ETH-250"
        assert next(m for m in mappings if m.target_field == "price").transform is None

    def test_available_source_fields(self, service, product):
        fields = service.available_source_fields([product])

        assert "metadata.origin" in fields
        assert "metadata.altitude" not in fields
        assert "images" in fields
        assert fields == sorted(fields)

    def test_available_source_fields_empty(self, service):
        assert service.available_source_fields([]) == []

    def test_suggested_mappings_only_for_available_fields(self, service):
        product = ExternalProductFactory.create(description=None)
        available = service.available_source_fields([product])

        suggested = service.suggested_mappings("ROASTIFY", available)

        assert "description" not in [m.source_field for m in suggested]
        assert "name" in [m.source_field for m in suggested]

    def test_singleton(self):
        assert get_field_mapping_service() is get_field_mapping_service()


class TestTextUtils:
    """Tests for slug helpers."""

    def test_slugify(self):
        assert slugify("  Ethiopia Yirgacheffe (Light) ") == "ethiopia-yirgacheffe-light"
        assert slugify("Café Brasil") == "cafe-brasil"

    def test_product_slug_includes_sku(self):
        assert product_slug("Kenya AA", "KEN/AA-1") == "kenya-aa-ken-aa-1"
