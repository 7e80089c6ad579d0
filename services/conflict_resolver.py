"""
Conflict resolution for incoming products.

An incoming product conflicts with the catalog when its external ID was
already imported from the same provider for this company, or its SKU is
already used by any product of the company (any provider).

Strategies:
- SKIP: do not write
- UPDATE: replace the fields of the product matched by external ID,
  or create a new product when only the SKU matched
- MERGE: like UPDATE, but existing non-empty fields win
- FORCE_CREATE: always create; a colliding SKU gets a "-N" suffix
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog

from models.import_job import ConflictInfo, ConflictStrategy, ConflictType, ImportJobConfig

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConflictResolution:
    """Result of resolve_conflict() with the audit record to emit."""
    skip: bool
    conflict: ConflictInfo
    modified_sku: Optional[str] = None
    existing_id_to_update: Optional[str] = None


@dataclass
class CatalogIndex:
    """
    Snapshot of a company's existing products, taken once per job run.

    skus covers every provider; external_ids only the job's provider.
    The job updates it as it creates products so later records in the
    same run see them.
    """
    skus: set[str] = field(default_factory=set)
    external_ids: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_products(cls, products: Iterable[dict], provider: str) -> "CatalogIndex":
        """
        Build from rows of {id, sku, external_id, import_source}.
        """
        index = cls()
        for product in products:
            if product.get("sku"):
                index.skus.add(product["sku"])
            if product.get("import_source") == provider and product.get("external_id"):
                index.external_ids[product["external_id"]] = product["id"]
        return index

    def existing_id_for(self, external_id: str) -> Optional[str]:
        return self.external_ids.get(external_id)

    def has_sku(self, sku: str) -> bool:
        return sku in self.skus

    def record_write(self, product_id: str, external_id: str, sku: str) -> None:
        self.skus.add(sku)
        self.external_ids.setdefault(external_id, product_id)


def effective_conflict_strategy(config: ImportJobConfig) -> ConflictStrategy:
    """
    Strategy for a job, honouring the legacy boolean flags.

    conflict_strategy wins when set. Otherwise update_existing -> UPDATE,
    then skip_duplicates -> SKIP, then SKIP.
    """
    if config.conflict_strategy:
        return ConflictStrategy(config.conflict_strategy)
    if config.update_existing:
        return ConflictStrategy.UPDATE
    return ConflictStrategy.SKIP


def generate_unique_sku(base_sku: str, seen_skus: set[str]) -> str:
    """
    First of "<base>-1", "<base>-2", ... not in seen_skus.

    The caller adds the returned SKU to its seen set once it is written.
    """
    suffix = 1
    candidate = f"{base_sku}-{suffix}"
    while candidate in seen_skus:
        suffix += 1
        candidate = f"{base_sku}-{suffix}"
    return candidate


def detect_conflict_type(existing_product_id: Optional[str], is_duplicate_sku: bool) -> Optional[ConflictType]:
    """Conflict type, or None when there is no conflict."""
    if existing_product_id and is_duplicate_sku:
        return ConflictType.BOTH
    if existing_product_id:
        return ConflictType.EXTERNAL_ID
    if is_duplicate_sku:
        return ConflictType.SKU
    return None


def resolve_conflict(
    external_id: str,
    sku: str,
    existing_product_id: Optional[str],
    is_duplicate_sku: bool,
    strategy: ConflictStrategy,
    seen_skus: set[str]
) -> ConflictResolution:
    """
    Decide what to do with a conflicting product.

    Args:
        external_id: Provider product ID
        sku: Incoming SKU
        existing_product_id: Product already imported with this external ID
        is_duplicate_sku: SKU already used in the company catalog
        strategy: Effective conflict strategy
        seen_skus: SKUs known so far in this run (not modified)

    Returns:
        ConflictResolution

    Raises:
        ValueError: If there is no conflict to resolve
    """
    conflict_type = detect_conflict_type(existing_product_id, is_duplicate_sku)
    if conflict_type is None:
        raise ValueError("resolve_conflict called without a conflict")

    strategy = ConflictStrategy(strategy)
    info = dict(
        external_id=external_id,
        sku=sku,
        existing_product_id=existing_product_id,
        conflict_type=conflict_type,
        resolution=strategy,
    )

    if strategy == ConflictStrategy.SKIP:
        return ConflictResolution(skip=True, conflict=ConflictInfo(**info, skipped=True))

    if strategy in (ConflictStrategy.UPDATE, ConflictStrategy.MERGE):
        # SKU-only collisions have nothing to update: create instead
        return ConflictResolution(
            skip=False,
            conflict=ConflictInfo(**info),
            existing_id_to_update=existing_product_id,
        )

    # FORCE_CREATE
    if is_duplicate_sku:
        new_sku = generate_unique_sku(sku, seen_skus)
        logger.debug("sku_suffix_generated", sku=sku, new_sku=new_sku)
        return ConflictResolution(
            skip=False,
            conflict=ConflictInfo(**info, modified=True, modified_sku=new_sku),
            modified_sku=new_sku,
        )
    return ConflictResolution(skip=False, conflict=ConflictInfo(**info))
