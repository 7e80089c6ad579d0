"""
Import job persistence.

Reads and writes product_import_jobs rows. Status changes are written
as a conditional update (only from statuses that may move to the new
one), so a concurrent cancel and completion cannot both win.
"""

from typing import Any, Optional
from datetime import datetime, timezone
import structlog

from config import get_supabase_client
from models.import_job import (
    ImportJobConfig,
    ImportJobError,
    ImportJobPhase,
    ImportJobProgress,
    ImportJobResponse,
    ImportJobStatus,
    STATUS_TRANSITIONS,
)
from exceptions import (
    ImportJobNotFoundError,
    InvalidStatusTransitionError,
    DatabaseError,
)

logger = structlog.get_logger(__name__)

PROGRESS_COLUMNS = (
    "status",
    "phase",
    "progress",
    "total_products",
    "processed_products",
    "total_images",
    "processed_images",
    "imported_count",
    "skipped_count",
    "error_count",
    "current_item",
    "estimated_seconds_remaining",
    "started_at",
    "completed_at",
)

# Fields a retry resets
RESET_FIELDS = {
    "phase": ImportJobPhase.QUEUED.value,
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
    "started_at": None,
    "completed_at": None,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sources_for(new_status: ImportJobStatus) -> list[str]:
    """Statuses allowed to move to new_status."""
    return [
        status.value
        for status, targets in STATUS_TRANSITIONS.items()
        if new_status in targets
    ]


class ImportJobService:
    """
    Import job rows.

    The processor is the only writer of progress fields while a job runs.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "product_import_jobs"

    # ===================
    # READ OPERATIONS
    # ===================

    def get_by_id(self, job_id: str, company_id: Optional[str] = None) -> ImportJobResponse:
        """
        Get a job, optionally scoped to a company.

        Raises:
            ImportJobNotFoundError: If job doesn't exist for the company
        """
        logger.debug("getting_import_job", job_id=job_id, company_id=company_id)

        try:
            query = self.db.table(self.table).select("*").eq("id", job_id)
            if company_id:
                query = query.eq("company_id", company_id)
            result = query.execute()
        except Exception as e:
            logger.error("get_import_job_failed", job_id=job_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ImportJobNotFoundError(job_id)

        return self._row_to_response(result.data[0])

    def get_all(
        self,
        company_id: str,
        status: Optional[ImportJobStatus] = None,
        provider: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> tuple[list[ImportJobResponse], int]:
        """
        Jobs of a company, newest first.

        Returns:
            Tuple of (jobs, total count)
        """
        logger.info(
            "getting_import_jobs",
            company_id=company_id,
            status=status,
            provider=provider,
            limit=limit,
            offset=offset
        )

        try:
            query = (
                self.db.table(self.table)
                .select("*", count="exact")
                .eq("company_id", company_id)
            )
            if status:
                query = query.eq("status", ImportJobStatus(status).value)
            if provider:
                query = query.eq("provider", provider.upper())

            result = (
                query
                .order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        except Exception as e:
            logger.error("get_import_jobs_failed", company_id=company_id, error=str(e))
            raise DatabaseError("select", str(e))

        jobs = [self._row_to_response(row) for row in result.data]
        total = result.count or 0

        logger.info("import_jobs_retrieved", count=len(jobs), total=total)

        return jobs, total

    def get_history_rows(self, company_id: str) -> list[dict]:
        """Rows needed for import history statistics."""
        try:
            result = (
                self.db.table(self.table)
                .select(
                    "id, status, provider, imported_count, processed_images, "
                    "created_at, started_at, completed_at"
                )
                .eq("company_id", company_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_import_history_failed", company_id=company_id, error=str(e))
            raise DatabaseError("select", str(e))

        return result.data

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(
        self,
        company_id: str,
        client_id: str,
        config: ImportJobConfig,
        created_by: Optional[str] = None
    ) -> ImportJobResponse:
        """Insert a PENDING job in phase QUEUED."""
        logger.info(
            "creating_import_job",
            company_id=company_id,
            provider=config.provider,
            integration_id=config.integration_id
        )

        row = {
            "company_id": company_id,
            "client_id": client_id,
            "integration_id": config.integration_id,
            "provider": config.provider,
            "status": ImportJobStatus.PENDING.value,
            "config": config.to_storage(),
            "created_by": created_by,
            **RESET_FIELDS,
        }

        try:
            result = self.db.table(self.table).insert(row).execute()
        except Exception as e:
            logger.error("create_import_job_failed", company_id=company_id, error=str(e))
            raise DatabaseError("insert", str(e))

        if not result.data:
            raise DatabaseError("insert", "No data returned from insert")

        job = self._row_to_response(result.data[0])
        logger.info("import_job_created", job_id=job.id, company_id=company_id)
        return job

    def update_progress(
        self,
        progress: ImportJobProgress,
        errors: Optional[list[ImportJobError]] = None,
        imported_ids: Optional[list[str]] = None
    ) -> None:
        """
        Persist a progress snapshot (status excluded).

        errors / imported_ids replace the stored lists when given.
        """
        data = progress.model_dump(mode="json", include=set(PROGRESS_COLUMNS) - {"status"})
        if errors is not None:
            data["error_log"] = [e.to_log_entry() for e in errors] or None
        if imported_ids is not None:
            data["imported_ids"] = list(imported_ids)

        try:
            self.db.table(self.table).update(data).eq("id", progress.id).execute()
        except Exception as e:
            logger.error("update_import_progress_failed", job_id=progress.id, error=str(e))
            raise DatabaseError("update", str(e))

    def update_status(
        self,
        job_id: str,
        new_status: ImportJobStatus,
        fields: Optional[dict[str, Any]] = None
    ) -> ImportJobResponse:
        """
        Move a job to new_status, writing extra fields in the same update.

        Raises:
            ImportJobNotFoundError: If job doesn't exist
            InvalidStatusTransitionError: If the current status can't move there
        """
        new_status = ImportJobStatus(new_status)
        data = {**(fields or {}), "status": new_status.value}

        try:
            result = (
                self.db.table(self.table)
                .update(data)
                .eq("id", job_id)
                .in_("status", _sources_for(new_status))
                .execute()
            )
        except Exception as e:
            logger.error("update_import_status_failed", job_id=job_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            current = self.get_by_id(job_id)
            raise InvalidStatusTransitionError(
                current.status.value,
                new_status.value,
                terminal_status="COMPLETED and CANCELLED"
            )

        logger.info("import_job_status_updated", job_id=job_id, status=new_status.value)
        return self._row_to_response(result.data[0])

    def mark_in_progress(self, job_id: str, phase: ImportJobPhase) -> ImportJobResponse:
        return self.update_status(
            job_id,
            ImportJobStatus.IN_PROGRESS,
            {"phase": ImportJobPhase(phase).value, "started_at": _now()}
        )

    def mark_completed(
        self,
        progress: ImportJobProgress,
        errors: list[ImportJobError],
        imported_ids: list[str]
    ) -> ImportJobResponse:
        data = progress.model_dump(mode="json", include=set(PROGRESS_COLUMNS) - {"status"})
        data["error_log"] = [e.to_log_entry() for e in errors] or None
        data["imported_ids"] = list(imported_ids)
        return self.update_status(progress.id, ImportJobStatus.COMPLETED, data)

    def mark_failed(
        self,
        job_id: str,
        errors: list[ImportJobError],
        progress: Optional[ImportJobProgress] = None
    ) -> ImportJobResponse:
        data = {}
        if progress is not None:
            data.update(progress.model_dump(mode="json", include=set(PROGRESS_COLUMNS) - {"status"}))
        data["error_log"] = [e.to_log_entry() for e in errors]
        data["completed_at"] = _now()
        return self.update_status(job_id, ImportJobStatus.FAILED, data)

    def mark_cancelled(self, job_id: str) -> ImportJobResponse:
        return self.update_status(
            job_id,
            ImportJobStatus.CANCELLED,
            {"completed_at": _now(), "current_item": None}
        )

    def reset_for_retry(self, job_id: str) -> ImportJobResponse:
        """FAILED -> PENDING with every progress field reset."""
        return self.update_status(job_id, ImportJobStatus.PENDING, dict(RESET_FIELDS))

    # ===================
    # HELPERS
    # ===================

    def _row_to_response(self, row: dict) -> ImportJobResponse:
        config = row.get("config")
        return ImportJobResponse(
            id=row["id"],
            company_id=row["company_id"],
            client_id=row.get("client_id"),
            integration_id=row.get("integration_id"),
            provider=row["provider"],
            status=row["status"],
            phase=row.get("phase") or ImportJobPhase.QUEUED,
            progress=row.get("progress") or 0,
            total_products=row.get("total_products") or 0,
            processed_products=row.get("processed_products") or 0,
            total_images=row.get("total_images") or 0,
            processed_images=row.get("processed_images") or 0,
            imported_count=row.get("imported_count") or 0,
            skipped_count=row.get("skipped_count") or 0,
            error_count=row.get("error_count") or 0,
            current_item=row.get("current_item"),
            estimated_seconds_remaining=row.get("estimated_seconds_remaining"),
            errors=row.get("error_log") or [],
            imported_ids=row.get("imported_ids") or [],
            config=ImportJobConfig.model_validate(config) if config else None,
            created_by=row.get("created_by"),
            created_at=row["created_at"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )


# Singleton instance
_import_job_service: Optional[ImportJobService] = None


def get_import_job_service() -> ImportJobService:
    """Get or create ImportJobService instance."""
    global _import_job_service
    if _import_job_service is None:
        _import_job_service = ImportJobService()
    return _import_job_service
