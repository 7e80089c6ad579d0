"""
Product import job schemas.

An import job moves through a forward-only status machine:

    PENDING -> IN_PROGRESS -> COMPLETED | FAILED | CANCELLED
    PENDING -> CANCELLED
    FAILED  -> PENDING        (explicit retry only)

While IN_PROGRESS the job also reports a pipeline phase, which only
ever advances (QUEUED ... DONE).
"""

from pydantic import BaseModel, Field, model_validator
from typing import Any, Optional
from enum import Enum
from datetime import datetime, timezone

from models.base import BaseSchema, FrozenSchema
from models.field_mapping import FieldMapping, ValidationResult


class ImportJobStatus(str, Enum):
    """Import job lifecycle status."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ImportJobPhase(str, Enum):
    """Pipeline phase reported while a job is in progress."""
    QUEUED = "QUEUED"
    FETCHING = "FETCHING"
    MAPPING = "MAPPING"
    CREATING = "CREATING"
    DOWNLOADING_IMAGES = "DOWNLOADING_IMAGES"
    UPLOADING_IMAGES = "UPLOADING_IMAGES"
    GENERATING_THUMBNAILS = "GENERATING_THUMBNAILS"
    FINALIZING = "FINALIZING"
    DONE = "DONE"


class ConflictStrategy(str, Enum):
    """How an incoming product that collides with the catalog is handled."""
    SKIP = "SKIP"
    UPDATE = "UPDATE"
    MERGE = "MERGE"
    FORCE_CREATE = "FORCE_CREATE"


class ConflictType(str, Enum):
    """What the incoming product collided on."""
    EXTERNAL_ID = "EXTERNAL_ID"
    SKU = "SKU"
    BOTH = "BOTH"


class ImportErrorCode(str, Enum):
    """Codes recorded in a job's error log."""
    FETCH_FAILED = "FETCH_FAILED"
    MAPPING_FAILED = "MAPPING_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    DUPLICATE_SKU = "DUPLICATE_SKU"
    IMAGE_DOWNLOAD_FAILED = "IMAGE_DOWNLOAD_FAILED"
    IMAGE_UPLOAD_FAILED = "IMAGE_UPLOAD_FAILED"
    THUMBNAIL_GENERATION_FAILED = "THUMBNAIL_GENERATION_FAILED"
    IMAGE_IMPORT_ERROR = "IMAGE_IMPORT_ERROR"
    NO_S3_CREDENTIALS = "NO_S3_CREDENTIALS"
    DATABASE_ERROR = "DATABASE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# Allowed status moves. FAILED -> PENDING is the retry path.
STATUS_TRANSITIONS = {
    ImportJobStatus.PENDING: {
        ImportJobStatus.IN_PROGRESS,
        ImportJobStatus.FAILED,
        ImportJobStatus.CANCELLED,
    },
    ImportJobStatus.IN_PROGRESS: {
        ImportJobStatus.COMPLETED,
        ImportJobStatus.FAILED,
        ImportJobStatus.CANCELLED,
    },
    ImportJobStatus.FAILED: {ImportJobStatus.PENDING},
    ImportJobStatus.COMPLETED: set(),
    ImportJobStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = {
    ImportJobStatus.COMPLETED,
    ImportJobStatus.FAILED,
    ImportJobStatus.CANCELLED,
}

CANCELLABLE_STATUSES = {ImportJobStatus.PENDING, ImportJobStatus.IN_PROGRESS}

# Phase order (lower index = earlier in pipeline)
PHASE_ORDER = {phase: index for index, phase in enumerate(ImportJobPhase)}


def is_valid_status_transition(current: ImportJobStatus, new: ImportJobStatus) -> bool:
    """
    Check if status transition is valid.

    Rules:
    - Status only moves forward
    - COMPLETED and CANCELLED are terminal
    - FAILED can only go back to PENDING (retry)
    """
    return ImportJobStatus(new) in STATUS_TRANSITIONS[ImportJobStatus(current)]


def is_valid_phase_transition(current: ImportJobPhase, new: ImportJobPhase) -> bool:
    """Phases strictly advance. Skipping phases is allowed."""
    return PHASE_ORDER[ImportJobPhase(new)] > PHASE_ORDER[ImportJobPhase(current)]


# ===================
# CONFIG & PAYLOAD
# ===================

class ImportJobConfig(FrozenSchema):
    """
    Immutable input of an import job.

    skip_duplicates / update_existing are legacy flags, consulted only
    when conflict_strategy is not set.
    """

    provider: str = Field(..., description="Provider key, e.g. ROASTIFY")
    integration_id: str = Field(..., description="Client integration UUID")
    selected_product_ids: Optional[tuple[str, ...]] = Field(
        None,
        description="Import only these external product IDs"
    )
    import_images: bool = True
    generate_thumbnails: bool = True
    skip_duplicates: bool = True
    update_existing: bool = False
    conflict_strategy: Optional[ConflictStrategy] = None
    field_mapping_profile_id: Optional[str] = None
    custom_mappings: Optional[tuple[FieldMapping, ...]] = None

    def to_storage(self) -> dict:
        """JSON for the job row. Mapping defaults keep their presence."""
        data = self.model_dump(mode="json", exclude={"custom_mappings"})
        if self.custom_mappings is not None:
            data["custom_mappings"] = [
                m.model_dump(mode="json", exclude_unset=True) for m in self.custom_mappings
            ]
        return data


class ImportJobPayload(FrozenSchema):
    """What the job runner hands to the processor for one execution."""

    job_id: str
    company_id: str
    client_id: str
    integration_id: str
    provider: str
    config: ImportJobConfig
    created_by: Optional[str] = None


# ===================
# PROGRESS & ERRORS
# ===================

class ImportJobError(BaseModel):
    """One entry of a job's ordered error log."""

    message: str
    code: ImportErrorCode
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    product_id: Optional[str] = None
    sku: Optional[str] = None
    details: Optional[dict[str, Any]] = None

    def to_log_entry(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class ImportJobProgress(FrozenSchema):
    """
    Point-in-time snapshot of a job's progress fields.

    Every event carries one of these. Derive the next snapshot with
    advance() instead of mutating.
    """

    id: str = Field(..., description="Job UUID")
    status: ImportJobStatus
    phase: ImportJobPhase
    progress: int = Field(default=0, ge=0, le=100)
    total_products: int = Field(default=0, ge=0)
    processed_products: int = Field(default=0, ge=0)
    total_images: int = Field(default=0, ge=0)
    processed_images: int = Field(default=0, ge=0)
    imported_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)
    error_count: int = Field(default=0, ge=0)
    current_item: Optional[str] = None
    estimated_seconds_remaining: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_counters(self) -> "ImportJobProgress":
        """Counters never exceed what has been processed."""
        if self.processed_products > self.total_products:
            raise ValueError("processed_products cannot exceed total_products")
        outcomes = self.imported_count + self.skipped_count + self.error_count
        if outcomes > self.processed_products:
            raise ValueError("imported + skipped + errors cannot exceed processed_products")
        return self

    def advance(self, **changes: Any) -> "ImportJobProgress":
        """New snapshot with `changes` applied. Re-validates the counters."""
        return ImportJobProgress.model_validate({**dict(self), **changes})

    def to_event_data(self) -> dict:
        return self.model_dump(mode="json")


class ConflictInfo(FrozenSchema):
    """Audit record of one conflict resolution. Emitted, never persisted."""

    external_id: str
    sku: str
    existing_product_id: Optional[str] = None
    conflict_type: ConflictType
    resolution: ConflictStrategy
    skipped: bool = False
    modified: bool = False
    modified_sku: Optional[str] = None


# ===================
# REQUEST SCHEMAS
# ===================

class CreateImportJobRequest(BaseSchema):
    """
    Start an import from a client integration.

    Required: integration_id
    """

    integration_id: str = Field(..., min_length=1)
    selected_product_ids: Optional[list[str]] = None
    import_images: bool = True
    generate_thumbnails: bool = True
    skip_duplicates: bool = True
    update_existing: bool = False
    conflict_strategy: Optional[ConflictStrategy] = None
    field_mapping_profile_id: Optional[str] = None
    custom_mappings: Optional[list[FieldMapping]] = None


class PreviewImportRequest(BaseSchema):
    """Preview what an import would do, without writing anything."""

    integration_id: str = Field(..., min_length=1)
    field_mapping_profile_id: Optional[str] = None
    custom_mappings: Optional[list[FieldMapping]] = None


# ===================
# RESPONSE SCHEMAS
# ===================

class ImportJobResponse(BaseSchema):
    """Import job as stored, for GET responses."""

    id: str
    company_id: str
    client_id: Optional[str] = None
    integration_id: Optional[str] = None
    provider: str
    status: ImportJobStatus
    phase: ImportJobPhase
    progress: int = 0
    total_products: int = 0
    processed_products: int = 0
    total_images: int = 0
    processed_images: int = 0
    imported_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    current_item: Optional[str] = None
    estimated_seconds_remaining: Optional[int] = None
    errors: list[ImportJobError] = Field(default_factory=list)
    imported_ids: list[str] = Field(default_factory=list)
    config: Optional[ImportJobConfig] = None
    created_by: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_progress(self) -> ImportJobProgress:
        """Snapshot of the progress fields."""
        return ImportJobProgress(
            id=self.id,
            status=self.status,
            phase=self.phase,
            progress=self.progress,
            total_products=self.total_products,
            processed_products=self.processed_products,
            total_images=self.total_images,
            processed_images=self.processed_images,
            imported_count=self.imported_count,
            skipped_count=self.skipped_count,
            error_count=self.error_count,
            current_item=self.current_item,
            estimated_seconds_remaining=self.estimated_seconds_remaining,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


class ImportJobListResponse(BaseSchema):
    """List of import jobs with limit/offset pagination."""

    items: list[ImportJobResponse]
    total: int
    limit: int
    offset: int


class PreviewProduct(BaseSchema):
    """One product in an import preview."""

    external_id: str
    sku: str
    name: str
    description: Optional[str] = None
    price: float = 0.0
    currency: str = "USD"
    image_count: int = 0
    variant_count: int = 0
    will_import: bool = True
    skip_reason: Optional[str] = None
    mapped_data: dict[str, Any] = Field(default_factory=dict)
    validation: ValidationResult = Field(default_factory=ValidationResult)


class PreviewImportResponse(BaseSchema):
    """Import preview for an integration."""

    provider: str
    total_products: int
    will_import: int
    will_skip: int
    estimated_images: int
    products: list[PreviewProduct] = Field(default_factory=list)
    suggested_mappings: list[FieldMapping] = Field(default_factory=list)
    available_source_fields: list[str] = Field(default_factory=list)


class JobsPerDay(BaseModel):
    """Jobs created on one day."""
    date: str = Field(..., description="YYYY-MM-DD")
    count: int


class ImportHistoryResponse(BaseSchema):
    """Import statistics for a company."""

    company_id: str
    total_jobs: int = 0
    successful_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    total_products_imported: int = 0
    total_images_imported: int = 0
    avg_job_duration_seconds: int = 0
    jobs_by_provider: dict[str, int] = Field(default_factory=dict)
    jobs_over_time: list[JobsPerDay] = Field(default_factory=list)
