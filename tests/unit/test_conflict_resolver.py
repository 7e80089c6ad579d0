"""
Unit tests for conflict detection and resolution.

Run: pytest tests/unit/test_conflict_resolver.py -v
"""

import pytest

from services.conflict_resolver import (
    CatalogIndex,
    detect_conflict_type,
    effective_conflict_strategy,
    generate_unique_sku,
    resolve_conflict,
)
from models.import_job import ConflictStrategy, ConflictType

from tests.factories import ImportJobFactory, ProductRowFactory


class TestCatalogIndex:
    """Tests for CatalogIndex"""

    def test_skus_span_providers_but_external_ids_do_not(self):
        rows = [
            ProductRowFactory.create(id="p1", sku="ETH-250", external_id="rst-1", import_source="ROASTIFY"),
            ProductRowFactory.create(id="p2", sku="KEN-AA", external_id="shp-9", import_source="SHOPIFY"),
            ProductRowFactory.create(id="p3", sku="MANUAL-1"),
        ]

        index = CatalogIndex.from_products(rows, "ROASTIFY")

        assert index.skus == {"ETH-250", "KEN-AA", "MANUAL-1"}
        assert index.external_ids == {"rst-1": "p1"}
        assert index.existing_id_for("shp-9") is None

    def test_record_write_updates_index(self):
        index = CatalogIndex()

        index.record_write("p9", "rst-9", "NEW-SKU")

        assert index.has_sku("NEW-SKU")
        assert index.existing_id_for("rst-9") == "p9"


class TestEffectiveStrategy:
    """Tests for effective_conflict_strategy()"""

    def test_explicit_strategy_wins(self):
        config = ImportJobFactory.config(conflict_strategy="MERGE", update_existing=True)
        assert effective_conflict_strategy(config) == ConflictStrategy.MERGE

    def test_update_existing_flag(self):
        config = ImportJobFactory.config(update_existing=True)
        assert effective_conflict_strategy(config) == ConflictStrategy.UPDATE

    def test_defaults_to_skip(self):
        assert effective_conflict_strategy(ImportJobFactory.config()) == ConflictStrategy.SKIP
        assert effective_conflict_strategy(ImportJobFactory.config(skip_duplicates=False)) == ConflictStrategy.SKIP


class TestGenerateUniqueSku:
    """Tests for generate_unique_sku()"""

    def test_first_free_suffix(self):
        assert generate_unique_sku("ETH", {"ETH"}) == "ETH-1"
        assert generate_unique_sku("ETH", {"ETH", "ETH-1", "ETH-2"}) == "ETH-3"

    def test_does_not_modify_seen_set(self):
        seen = {"ETH"}
        generate_unique_sku("ETH", seen)
        assert seen == {"ETH"}


class TestResolveConflict:
    """Tests for resolve_conflict()"""

    @pytest.mark.parametrize("existing_id,duplicate_sku,expected", [
        ("p1", True, ConflictType.BOTH),
        ("p1", False, ConflictType.EXTERNAL_ID),
        (None, True, ConflictType.SKU),
        (None, False, None),
    ])
    def test_detect_conflict_type(self, existing_id, duplicate_sku, expected):
        assert detect_conflict_type(existing_id, duplicate_sku) == expected

    def test_skip(self):
        resolution = resolve_conflict("rst-1", "ETH", "p1", True, ConflictStrategy.SKIP, {"ETH"})

        assert resolution.skip is True
        assert resolution.conflict.skipped is True
        assert resolution.conflict.conflict_type == ConflictType.BOTH

    def test_update_targets_external_id_match(self):
        resolution = resolve_conflict("rst-1", "ETH", "p1", False, ConflictStrategy.UPDATE, set())

        assert resolution.skip is False
        assert resolution.existing_id_to_update == "p1"
        assert resolution.modified_sku is None

    def test_merge_on_sku_only_collision_creates(self):
        """Nothing to merge into when only the SKU matched."""
        resolution = resolve_conflict("rst-2", "ETH", None, True, ConflictStrategy.MERGE, {"ETH"})

        assert resolution.skip is False
        assert resolution.existing_id_to_update is None
        assert resolution.conflict.resolution == ConflictStrategy.MERGE

    def test_force_create_suffixes_duplicate_sku(self):
        resolution = resolve_conflict("rst-2", "ETH", None, True, ConflictStrategy.FORCE_CREATE, {"ETH", "ETH-1"})

        assert resolution.modified_sku == "ETH-2"
        assert resolution.conflict.modified is True
        assert resolution.conflict.modified_sku == "ETH-2"

    def test_force_create_external_id_only_keeps_sku(self):
        resolution = resolve_conflict("rst-1", "ETH", "p1", False, ConflictStrategy.FORCE_CREATE, set())

        assert resolution.modified_sku is None
        assert resolution.existing_id_to_update is None

    def test_no_conflict_raises(self):
        with pytest.raises(ValueError):
            resolve_conflict("rst-1", "ETH", None, False, ConflictStrategy.SKIP, set())
