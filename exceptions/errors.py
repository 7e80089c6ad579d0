"""
Custom exception classes for the application.

Every error carries a machine-readable code, an HTTP status and details
so routes can serialise it without knowing the concrete type.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "IMPORT_JOB_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# IMPORT JOB ERRORS
# ===================

class ImportJobNotFoundError(NotFoundError):
    """Import job not found (or belongs to another company)."""

    def __init__(self, job_id: str):
        super().__init__(
            resource="Import job",
            identifier=job_id,
            code="IMPORT_JOB_NOT_FOUND"
        )


class InvalidJobStateError(ConflictError):
    """Operation not allowed in the job's current status."""

    def __init__(self, job_id: str, status: str, operation: str):
        super().__init__(
            code="INVALID_JOB_STATE",
            message=f"Cannot {operation} an import job with status {status}",
            details={"job_id": job_id, "status": status, "operation": operation}
        )


class InvalidStatusTransitionError(ValidationError):
    """Invalid status transition."""

    def __init__(self, current_status: str, new_status: str, terminal_status: str = "COMPLETED"):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            message=f"Cannot transition from {current_status} to {new_status}",
            details={
                "current_status": current_status,
                "new_status": new_status,
                "reason": f"Status can only move forward, and {terminal_status} is terminal"
            }
        )


# ===================
# FIELD MAPPING PROFILE ERRORS
# ===================

class FieldMappingProfileNotFoundError(NotFoundError):
    """Field mapping profile not found."""

    def __init__(self, profile_id: str):
        super().__init__(
            resource="Field mapping profile",
            identifier=profile_id,
            code="FIELD_MAPPING_PROFILE_NOT_FOUND"
        )


# ===================
# INTEGRATION / PROVIDER ERRORS
# ===================

class IntegrationNotFoundError(NotFoundError):
    """Integration not found for this client."""

    def __init__(self, integration_id: str):
        super().__init__(
            resource="Integration",
            identifier=integration_id,
            code="INTEGRATION_NOT_FOUND"
        )


class IntegrationCredentialsMissingError(ValidationError):
    """Integration exists but has no credentials configured."""

    def __init__(self, integration_id: str):
        super().__init__(
            code="INTEGRATION_CREDENTIALS_MISSING",
            message="Integration credentials not configured",
            details={"integration_id": integration_id}
        )


class UnsupportedProviderError(ValidationError):
    """No catalog provider adapter registered for this provider."""

    def __init__(self, provider: str, supported: list[str]):
        super().__init__(
            code="UNSUPPORTED_PROVIDER",
            message=f"Provider {provider} is not supported for product import",
            details={"provider": provider, "supported": supported}
        )


class ImportFetchError(AppError):
    """Fetching the external catalog failed. Fatal to the job run."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="FETCH_FAILED",
            message=message,
            status_code=503,
            details=details
        )


# ===================
# IMAGE ERRORS
# ===================

class UnsafeImageUrlError(ValidationError):
    """Image URL rejected by the download policy before any request."""

    def __init__(self, url: str, reason: str):
        super().__init__(
            code="UNSAFE_IMAGE_URL",
            message=f"Image URL rejected: {reason}",
            details={"url": url, "reason": reason}
        )


class ImageDownloadError(AppError):
    """Image download failed or payload was not a usable image."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(
            code="IMAGE_DOWNLOAD_FAILED",
            message=message,
            status_code=502,
            details={"url": url} if url else None
        )
