"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,

    # Import jobs
    ImportJobNotFoundError,
    InvalidJobStateError,
    InvalidStatusTransitionError,

    # Field mapping profiles
    FieldMappingProfileNotFoundError,

    # Integrations / providers
    IntegrationNotFoundError,
    IntegrationCredentialsMissingError,
    UnsupportedProviderError,
    ImportFetchError,

    # Images
    UnsafeImageUrlError,
    ImageDownloadError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",

    # Import jobs
    "ImportJobNotFoundError",
    "InvalidJobStateError",
    "InvalidStatusTransitionError",

    # Field mapping profiles
    "FieldMappingProfileNotFoundError",

    # Integrations / providers
    "IntegrationNotFoundError",
    "IntegrationCredentialsMissingError",
    "UnsupportedProviderError",
    "ImportFetchError",

    # Images
    "UnsafeImageUrlError",
    "ImageDownloadError",
]
