"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    FrozenSchema,
    TimestampMixin,
)
from models.external_product import (
    ExternalProduct,
    ExternalProductImage,
    ExternalProductVariant,
)
from models.field_mapping import (
    TransformName,
    ConfiguredTransform,
    ConditionOperator,
    ValidationType,
    TransformConfig,
    SimpleCondition,
    CompoundCondition,
    FieldMappingCondition,
    FieldValidationRule,
    FieldValidationError,
    ValidationResult,
    FieldMapping,
    MappingResult,
)
from models.field_mapping_profile import (
    FieldMappingProfileCreate,
    FieldMappingProfileUpdate,
    FieldMappingProfileResponse,
)
from models.import_job import (
    ImportJobStatus,
    ImportJobPhase,
    ConflictStrategy,
    ConflictType,
    ImportErrorCode,
    is_valid_status_transition,
    is_valid_phase_transition,
    ImportJobConfig,
    ImportJobPayload,
    ImportJobError,
    ImportJobProgress,
    ConflictInfo,
    CreateImportJobRequest,
    PreviewImportRequest,
    ImportJobResponse,
    ImportJobListResponse,
    PreviewProduct,
    PreviewImportResponse,
    ImportHistoryResponse,
)
from models.import_event import (
    ImportEventType,
    ImportEvent,
)
from models.product_image import (
    UploadResult,
    ThumbnailUrls,
    DownloadedImage,
    ImageImportResult,
    ImageImportProgress,
    StorageCredentials,
)

__all__ = [
    # Base
    "BaseSchema",
    "FrozenSchema",
    "TimestampMixin",

    # External products
    "ExternalProduct",
    "ExternalProductImage",
    "ExternalProductVariant",

    # Field mapping
    "TransformName",
    "ConfiguredTransform",
    "ConditionOperator",
    "ValidationType",
    "TransformConfig",
    "SimpleCondition",
    "CompoundCondition",
    "FieldMappingCondition",
    "FieldValidationRule",
    "FieldValidationError",
    "ValidationResult",
    "FieldMapping",
    "MappingResult",

    # Profiles
    "FieldMappingProfileCreate",
    "FieldMappingProfileUpdate",
    "FieldMappingProfileResponse",

    # Import jobs
    "ImportJobStatus",
    "ImportJobPhase",
    "ConflictStrategy",
    "ConflictType",
    "ImportErrorCode",
    "is_valid_status_transition",
    "is_valid_phase_transition",
    "ImportJobConfig",
    "ImportJobPayload",
    "ImportJobError",
    "ImportJobProgress",
    "ConflictInfo",
    "CreateImportJobRequest",
    "PreviewImportRequest",
    "ImportJobResponse",
    "ImportJobListResponse",
    "PreviewProduct",
    "PreviewImportResponse",
    "ImportHistoryResponse",

    # Events
    "ImportEventType",
    "ImportEvent",

    # Images
    "UploadResult",
    "ThumbnailUrls",
    "DownloadedImage",
    "ImageImportResult",
    "ImageImportProgress",
    "StorageCredentials",
]
