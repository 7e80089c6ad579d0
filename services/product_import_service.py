"""
Product import service.

Job lifecycle operations behind the import API: create, get, list,
cancel, retry, preview and history. Execution happens in the job
runner; this service only records jobs and hands them over.
"""

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import structlog

from config import settings
from integrations.providers import CatalogProvider, get_catalog_provider
from models.import_job import (
    CANCELLABLE_STATUSES,
    CreateImportJobRequest,
    ImportHistoryResponse,
    ImportJobConfig,
    ImportJobListResponse,
    ImportJobPayload,
    ImportJobResponse,
    ImportJobStatus,
    JobsPerDay,
    PreviewImportRequest,
    PreviewImportResponse,
    PreviewProduct,
)
from services.catalog_store import CatalogStore, get_catalog_store
from services.conflict_resolver import CatalogIndex
from services.field_mapping_profile_service import FieldMappingProfileService, get_field_mapping_profile_service
from services.field_mapping_service import FieldMappingService, get_field_mapping_service
from services.import_event_service import ImportEventService, get_import_event_service
from services.import_job_service import ImportJobService, get_import_job_service
from services.integration_service import IntegrationService, get_integration_service
from services.job_runner import JobRunner, get_job_runner
from utils.time_utils import parse_iso_timestamp
from exceptions import InvalidJobStateError

logger = structlog.get_logger(__name__)

SKIP_REASON_EXISTS = "Product already exists in your catalog (matching SKU or product ID)"
HISTORY_DAYS = 30


class ProductImportService:
    """
    Import job lifecycle.
    """

    def __init__(
        self,
        jobs: Optional[ImportJobService] = None,
        events: Optional[ImportEventService] = None,
        integrations: Optional[IntegrationService] = None,
        profiles: Optional[FieldMappingProfileService] = None,
        mapping: Optional[FieldMappingService] = None,
        catalog: Optional[CatalogStore] = None,
        runner: Optional[JobRunner] = None,
        provider_factory: Callable[[str], CatalogProvider] = get_catalog_provider
    ):
        self.jobs = jobs or get_import_job_service()
        self.events = events or get_import_event_service()
        self.integrations = integrations or get_integration_service()
        self.profiles = profiles or get_field_mapping_profile_service()
        self.mapping = mapping or get_field_mapping_service()
        self.catalog = catalog or get_catalog_store()
        self._runner = runner
        self.provider_factory = provider_factory

    @property
    def runner(self) -> JobRunner:
        if self._runner is None:
            self._runner = get_job_runner()
        return self._runner

    # ===================
    # JOB LIFECYCLE
    # ===================

    def create_import_job(
        self,
        request: CreateImportJobRequest,
        company_id: str,
        client_id: str,
        user_id: Optional[str] = None
    ) -> ImportJobResponse:
        """
        Record a PENDING job and enqueue it.

        The provider comes from the integration. The catalog is not
        fetched here; total_products is set once the job runs.

        Raises:
            IntegrationNotFoundError: If the integration isn't the client's
            UnsupportedProviderError: If no adapter exists for its provider
        """
        integration = self.integrations.get_integration(request.integration_id, client_id)
        provider = str(integration["provider"]).upper()
        self.provider_factory(provider)

        config = ImportJobConfig(
            provider=provider,
            integration_id=request.integration_id,
            selected_product_ids=request.selected_product_ids,
            import_images=request.import_images,
            generate_thumbnails=request.generate_thumbnails,
            skip_duplicates=request.skip_duplicates,
            update_existing=request.update_existing,
            conflict_strategy=request.conflict_strategy,
            field_mapping_profile_id=request.field_mapping_profile_id,
            custom_mappings=request.custom_mappings,
        )

        job = self.jobs.create(company_id, client_id, config, created_by=user_id)
        self._enqueue(job, config, user_id)

        logger.info("import_job_submitted", job_id=job.id, provider=provider, company_id=company_id)
        return job

    def get_import_job(self, job_id: str, company_id: str) -> ImportJobResponse:
        """
        Raises:
            ImportJobNotFoundError: If job doesn't exist for the company
        """
        return self.jobs.get_by_id(job_id, company_id)

    def list_import_jobs(
        self,
        company_id: str,
        status: Optional[ImportJobStatus] = None,
        provider: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> ImportJobListResponse:
        jobs, total = self.jobs.get_all(company_id, status=status, provider=provider, limit=limit, offset=offset)
        return ImportJobListResponse(items=jobs, total=total, limit=limit, offset=offset)

    def cancel_import_job(self, job_id: str, company_id: str) -> ImportJobResponse:
        """
        Cancel a PENDING or IN_PROGRESS job.

        Writes already committed by the job are kept. A running job stops
        at its next batch or phase boundary.

        Raises:
            ImportJobNotFoundError: If job doesn't exist for the company
            InvalidJobStateError: If the job can't be cancelled
        """
        job = self.jobs.get_by_id(job_id, company_id)
        if job.status not in CANCELLABLE_STATUSES:
            raise InvalidJobStateError(job_id, job.status.value, "cancel")

        updated = self.jobs.mark_cancelled(job_id)
        removed = self.runner.cancel(job_id)

        logger.info("import_job_cancelled", job_id=job_id, company_id=company_id, removed_from_runner=removed)

        self.events.emit_cancelled(job_id, company_id, updated.to_progress())
        return updated

    def retry_import_job(self, job_id: str, company_id: str, user_id: Optional[str] = None) -> ImportJobResponse:
        """
        Reset a FAILED job and enqueue it again with its stored config.

        Raises:
            ImportJobNotFoundError: If job doesn't exist for the company
            InvalidJobStateError: If the job isn't FAILED
        """
        job = self.jobs.get_by_id(job_id, company_id)
        if job.status != ImportJobStatus.FAILED:
            raise InvalidJobStateError(job_id, job.status.value, "retry")

        updated = self.jobs.reset_for_retry(job_id)
        self._enqueue(updated, job.config, user_id or job.created_by)

        logger.info("import_job_retried", job_id=job_id, company_id=company_id)
        return updated

    def _enqueue(self, job: ImportJobResponse, config: ImportJobConfig, user_id: Optional[str]) -> None:
        payload = ImportJobPayload(
            job_id=job.id,
            company_id=job.company_id,
            client_id=job.client_id,
            integration_id=config.integration_id,
            provider=config.provider,
            config=config,
            created_by=user_id,
        )
        self.runner.enqueue(
            job.id,
            payload,
            attempts=settings.import_job_attempts,
            backoff_delay_ms=settings.import_job_backoff_ms,
        )

    # ===================
    # PREVIEW
    # ===================

    def preview_import(
        self,
        request: PreviewImportRequest,
        company_id: str,
        client_id: str
    ) -> PreviewImportResponse:
        """
        What an import would do, without writing anything.

        Raises:
            IntegrationNotFoundError: If the integration isn't the client's
            IntegrationCredentialsMissingError: If it has no credentials
            UnsupportedProviderError: If no adapter exists for its provider
            ExternalServiceError: If the provider request fails
        """
        integration = self.integrations.get_integration(request.integration_id, client_id)
        provider_key = str(integration["provider"]).upper()
        provider = self.provider_factory(provider_key)
        credentials = self.integrations.get_credentials(request.integration_id, client_id)

        products = provider.fetch_all(credentials)

        mappings = self.profiles.resolve_mappings(
            company_id,
            provider_key,
            profile_id=request.field_mapping_profile_id,
            custom_mappings=request.custom_mappings,
        )
        index = CatalogIndex.from_products(self.catalog.find_existing_by_company(company_id), provider_key)

        preview_products = []
        for product in products:
            is_duplicate = index.existing_id_for(product.id) is not None or index.has_sku(product.sku)
            result = self.mapping.apply_mappings(product, mappings)
            preview_products.append(PreviewProduct(
                external_id=product.id,
                sku=product.sku,
                name=product.name,
                description=product.description,
                price=product.price,
                currency=product.currency,
                image_count=len(product.images),
                variant_count=len(product.variants),
                will_import=not is_duplicate,
                skip_reason=SKIP_REASON_EXISTS if is_duplicate else None,
                mapped_data=result.data,
                validation=result.validation,
            ))

        will_import = [p for p in preview_products if p.will_import]
        available_fields = self.mapping.available_source_fields(products)

        logger.info(
            "import_preview_built",
            company_id=company_id,
            provider=provider_key,
            total=len(products),
            will_import=len(will_import)
        )

        return PreviewImportResponse(
            provider=provider_key,
            total_products=len(products),
            will_import=len(will_import),
            will_skip=len(preview_products) - len(will_import),
            estimated_images=sum(p.image_count for p in will_import),
            products=preview_products,
            suggested_mappings=self.mapping.suggested_mappings(provider_key, available_fields),
            available_source_fields=available_fields,
        )

    # ===================
    # HISTORY
    # ===================

    def get_import_history(self, company_id: str) -> ImportHistoryResponse:
        """Job statistics for a company."""
        rows = self.jobs.get_history_rows(company_id)

        statuses = Counter(row["status"] for row in rows)
        completed = [row for row in rows if row["status"] == ImportJobStatus.COMPLETED.value]

        durations = []
        for row in completed:
            started = _parse_timestamp(row.get("started_at"))
            finished = _parse_timestamp(row.get("completed_at"))
            if started and finished:
                durations.append((finished - started).total_seconds())

        cutoff = datetime.now(timezone.utc) - timedelta(days=HISTORY_DAYS)
        per_day = Counter()
        for row in rows:
            created = _parse_timestamp(row.get("created_at"))
            if created and created >= cutoff:
                per_day[created.date().isoformat()] += 1

        return ImportHistoryResponse(
            company_id=company_id,
            total_jobs=len(rows),
            successful_jobs=statuses[ImportJobStatus.COMPLETED.value],
            failed_jobs=statuses[ImportJobStatus.FAILED.value],
            cancelled_jobs=statuses[ImportJobStatus.CANCELLED.value],
            total_products_imported=sum(row.get("imported_count") or 0 for row in completed),
            total_images_imported=sum(row.get("processed_images") or 0 for row in completed),
            avg_job_duration_seconds=round(sum(durations) / len(durations)) if durations else 0,
            jobs_by_provider=dict(Counter(row["provider"] for row in rows)),
            jobs_over_time=[JobsPerDay(date=day, count=count) for day, count in sorted(per_day.items())],
        )


def _parse_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = parse_iso_timestamp(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Singleton instance
_product_import_service: Optional[ProductImportService] = None


def get_product_import_service() -> ProductImportService:
    """Get or create ProductImportService instance."""
    global _product_import_service
    if _product_import_service is None:
        _product_import_service = ProductImportService()
    return _product_import_service
