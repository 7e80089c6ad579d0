"""
Product import API routes.

Tenant context comes from the X-Company-Id / X-Client-Id / X-User-Id
headers set by the gateway.
"""

from fastapi import APIRouter, Header, Query
from fastapi.responses import JSONResponse, StreamingResponse
from typing import Iterator, Optional
import structlog

from models.field_mapping_profile import (
    FieldMappingProfileCreate,
    FieldMappingProfileUpdate,
    FieldMappingProfileResponse,
)
from models.import_event import ImportEvent, ImportEventType
from models.import_job import (
    CreateImportJobRequest,
    ImportHistoryResponse,
    ImportJobListResponse,
    ImportJobResponse,
    ImportJobStatus,
    PreviewImportRequest,
    PreviewImportResponse,
    TERMINAL_STATUSES,
)
from services.field_mapping_profile_service import get_field_mapping_profile_service
from services.import_event_service import EventSubscription, get_import_event_service
from services.product_import_service import get_product_import_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/product-import", tags=["Product Import"])

# Seconds between SSE keepalive comments
KEEPALIVE_SECONDS = 15.0


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# IMPORT JOBS
# ===================

@router.post("/jobs", response_model=ImportJobResponse, status_code=201)
async def create_import_job(
    data: CreateImportJobRequest,
    company_id: str = Header(..., alias="X-Company-Id"),
    client_id: str = Header(..., alias="X-Client-Id"),
    user_id: Optional[str] = Header(None, alias="X-User-Id")
):
    """
    Start an import from a client integration.

    The job is queued and runs in the background.
    """
    try:
        return get_product_import_service().create_import_job(data, company_id, client_id, user_id)
    except Exception as e:
        return handle_error(e)


@router.get("/jobs", response_model=ImportJobListResponse)
async def list_import_jobs(
    company_id: str = Header(..., alias="X-Company-Id"),
    status: Optional[ImportJobStatus] = Query(None, description="Filter by status"),
    provider: Optional[str] = Query(None, description="Filter by provider"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0)
):
    """List import jobs, newest first."""
    try:
        return get_product_import_service().list_import_jobs(
            company_id,
            status=status,
            provider=provider,
            limit=limit,
            offset=offset
        )
    except Exception as e:
        return handle_error(e)


@router.get("/jobs/{job_id}", response_model=ImportJobResponse)
async def get_import_job(job_id: str, company_id: str = Header(..., alias="X-Company-Id")):
    try:
        return get_product_import_service().get_import_job(job_id, company_id)
    except Exception as e:
        return handle_error(e)


@router.post("/jobs/{job_id}/cancel", response_model=ImportJobResponse)
async def cancel_import_job(job_id: str, company_id: str = Header(..., alias="X-Company-Id")):
    """
    Cancel a pending or running job.

    Products already written are kept.
    """
    try:
        return get_product_import_service().cancel_import_job(job_id, company_id)
    except Exception as e:
        return handle_error(e)


@router.post("/jobs/{job_id}/retry", response_model=ImportJobResponse)
async def retry_import_job(
    job_id: str,
    company_id: str = Header(..., alias="X-Company-Id"),
    user_id: Optional[str] = Header(None, alias="X-User-Id")
):
    """Retry a failed job with its original configuration."""
    try:
        return get_product_import_service().retry_import_job(job_id, company_id, user_id)
    except Exception as e:
        return handle_error(e)


def _event_stream(job: ImportJobResponse, subscription: EventSubscription) -> Iterator[str]:
    """Current snapshot first, then live events until a terminal one."""
    try:
        yield ImportEvent(
            type=ImportEventType.PROGRESS,
            job_id=job.id,
            company_id=job.company_id,
            data=job.to_progress().to_event_data(),
        ).to_sse()

        if job.status in TERMINAL_STATUSES:
            return

        while True:
            event = subscription.get(timeout=KEEPALIVE_SECONDS)
            if event is None:
                if subscription.closed:
                    return
                yield ": keepalive\n\n"
                continue
            yield event.to_sse()
            if event.is_terminal:
                return
    finally:
        subscription.close()


@router.get("/jobs/{job_id}/events")
async def stream_import_events(job_id: str, company_id: str = Header(..., alias="X-Company-Id")):
    """
    Server-sent events for one job.

    Emits the job's current progress, then every event until the job
    completes, fails or is cancelled.
    """
    try:
        events = get_import_event_service()
        subscription = events.subscribe(job_id, company_id)
        try:
            job = get_product_import_service().get_import_job(job_id, company_id)
        except Exception:
            subscription.close()
            raise

        return StreamingResponse(
            _event_stream(job, subscription),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
        )
    except Exception as e:
        return handle_error(e)


# ===================
# PREVIEW & HISTORY
# ===================

@router.post("/preview", response_model=PreviewImportResponse)
async def preview_import(
    data: PreviewImportRequest,
    company_id: str = Header(..., alias="X-Company-Id"),
    client_id: str = Header(..., alias="X-Client-Id")
):
    """
    Fetch the catalog and show what an import would do.

    Nothing is written.
    """
    try:
        return get_product_import_service().preview_import(data, company_id, client_id)
    except Exception as e:
        return handle_error(e)


@router.get("/history", response_model=ImportHistoryResponse)
async def get_import_history(company_id: str = Header(..., alias="X-Company-Id")):
    try:
        return get_product_import_service().get_import_history(company_id)
    except Exception as e:
        return handle_error(e)


# ===================
# FIELD MAPPING PROFILES
# ===================

@router.get("/field-mappings", response_model=list[FieldMappingProfileResponse])
async def list_field_mapping_profiles(
    company_id: str = Header(..., alias="X-Company-Id"),
    provider: Optional[str] = Query(None, description="Filter by provider")
):
    """List profiles, default first."""
    try:
        return get_field_mapping_profile_service().get_all(company_id, provider=provider)
    except Exception as e:
        return handle_error(e)


@router.post("/field-mappings", response_model=FieldMappingProfileResponse, status_code=201)
async def create_field_mapping_profile(
    data: FieldMappingProfileCreate,
    company_id: str = Header(..., alias="X-Company-Id"),
    user_id: Optional[str] = Header(None, alias="X-User-Id")
):
    """
    Create a profile.

    A profile created with is_default replaces the provider's previous default.
    """
    try:
        return get_field_mapping_profile_service().create(company_id, data, created_by=user_id)
    except Exception as e:
        return handle_error(e)


@router.patch("/field-mappings/{profile_id}", response_model=FieldMappingProfileResponse)
async def update_field_mapping_profile(
    profile_id: str,
    data: FieldMappingProfileUpdate,
    company_id: str = Header(..., alias="X-Company-Id")
):
    try:
        return get_field_mapping_profile_service().update(profile_id, company_id, data)
    except Exception as e:
        return handle_error(e)


@router.delete("/field-mappings/{profile_id}", status_code=204)
async def delete_field_mapping_profile(profile_id: str, company_id: str = Header(..., alias="X-Company-Id")):
    try:
        get_field_mapping_profile_service().delete(profile_id, company_id)
        return None
    except Exception as e:
        return handle_error(e)
