"""
Product import processor.

Runs one import job through its phases:

    QUEUED -> FETCHING -> MAPPING -> CREATING -> DOWNLOADING_IMAGES
    -> UPLOADING_IMAGES -> GENERATING_THUMBNAILS -> FINALIZING -> DONE

Records are processed one at a time, in batches that only set the
progress and cancellation-check granularity. A record that fails is
logged to the job's error log and the job moves on. Anything that
escapes the pipeline marks the job FAILED and is re-raised to the job
runner, which owns retries.

Re-runs are idempotent through the catalog index (external ID and SKU
conflict checks), not through job bookkeeping.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from config import settings
from integrations.providers import CatalogProvider, get_catalog_provider
from models.external_product import ExternalProduct, ExternalProductImage
from models.field_mapping import FieldMapping
from models.import_job import (
    ConflictStrategy,
    ImportErrorCode,
    ImportJobError,
    ImportJobPayload,
    ImportJobPhase,
    ImportJobProgress,
    ImportJobResponse,
    ImportJobStatus,
    is_valid_phase_transition,
)
from models.product_image import ImageImportProgress
from services.catalog_store import CatalogStore, get_catalog_store
from services.conflict_resolver import CatalogIndex, effective_conflict_strategy, resolve_conflict
from services.field_mapping_profile_service import FieldMappingProfileService, get_field_mapping_profile_service
from services.field_mapping_service import FieldMappingService, get_field_mapping_service
from services.image_import_service import ImageImportService, get_image_import_service
from services.import_event_service import ImportEventService, get_import_event_service
from services.import_job_service import ImportJobService, get_import_job_service
from services.integration_service import IntegrationService, get_integration_service
from exceptions import AppError, ImportFetchError, InvalidStatusTransitionError
from utils.text_utils import product_slug

logger = structlog.get_logger(__name__)

# Overall progress reached at the end of each stage
PROGRESS_FETCHED = 5
PROGRESS_PRODUCTS_DONE = 80
PROGRESS_IMAGES_DONE = 95
PROGRESS_DONE = 100

# Mapped keys written to product columns; the rest go to custom_fields
PRODUCT_COLUMNS = {"name", "description", "sku", "price", "currency"}


class ImportCancelled(Exception):
    """The job was cancelled while running."""


class RecordOutcome(str, Enum):
    IMPORTED = "imported"
    SKIPPED = "skipped"
    ERROR = "error"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def effective_sku(product: ExternalProduct, data: dict[str, Any]) -> str:
    """SKU a record is written with: the mapped value, else the provider's."""
    mapped = data.get("sku")
    if _is_empty(mapped):
        return product.sku
    return str(mapped)


def _scaled(start: int, end: int, done: int, total: int) -> int:
    if total <= 0:
        return end
    return start + round((end - start) * min(done, total) / total)


def _eta_seconds(started: float, done: int, total: int) -> Optional[int]:
    if done <= 0 or total <= done:
        return None
    elapsed = time.monotonic() - started
    return round(elapsed / done * (total - done))


@dataclass
class ImportRun:
    """
    Mutable state of one execution. Lives only in the processor's locals.

    Events and the job row receive immutable snapshots from snapshot().
    """
    payload: ImportJobPayload
    started_at: Optional[datetime] = None
    status: ImportJobStatus = ImportJobStatus.IN_PROGRESS
    phase: ImportJobPhase = ImportJobPhase.QUEUED
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
    errors: list[ImportJobError] = field(default_factory=list)
    imported_ids: list[str] = field(default_factory=list)
    image_sets: list[tuple[str, list[ExternalProductImage]]] = field(default_factory=list)
    stage_started: float = field(default_factory=time.monotonic)

    @property
    def job_id(self) -> str:
        return self.payload.job_id

    @property
    def company_id(self) -> str:
        return self.payload.company_id

    def snapshot(self) -> ImportJobProgress:
        return ImportJobProgress(
            id=self.job_id,
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
        )

    def record(self, outcome: RecordOutcome) -> None:
        self.processed_products += 1
        if outcome == RecordOutcome.IMPORTED:
            self.imported_count += 1
        elif outcome == RecordOutcome.SKIPPED:
            self.skipped_count += 1
        else:
            self.error_count += 1


class ProductImportProcessor:
    """
    Executes import jobs handed over by the job runner.

    Holds no per-job state; one instance serves concurrent jobs.
    """

    def __init__(
        self,
        jobs: Optional[ImportJobService] = None,
        events: Optional[ImportEventService] = None,
        integrations: Optional[IntegrationService] = None,
        profiles: Optional[FieldMappingProfileService] = None,
        mapping: Optional[FieldMappingService] = None,
        catalog: Optional[CatalogStore] = None,
        images: Optional[ImageImportService] = None,
        provider_factory: Callable[[str], CatalogProvider] = get_catalog_provider,
        batch_size: Optional[int] = None,
        progress_interval: Optional[int] = None
    ):
        self.jobs = jobs or get_import_job_service()
        self.events = events or get_import_event_service()
        self.integrations = integrations or get_integration_service()
        self.profiles = profiles or get_field_mapping_profile_service()
        self.mapping = mapping or get_field_mapping_service()
        self.catalog = catalog or get_catalog_store()
        self.images = images or get_image_import_service()
        self.provider_factory = provider_factory
        self.batch_size = batch_size or settings.import_batch_size
        self.progress_interval = progress_interval or settings.import_progress_interval

    # ===================
    # ENTRY POINT
    # ===================

    def process_import(self, payload: ImportJobPayload) -> ImportJobResponse:
        """
        Run one job to completion.

        Returns:
            The job as stored after the run

        Raises:
            Exception: Whatever aborted the run, after the job is marked FAILED
        """
        log = logger.bind(job_id=payload.job_id, company_id=payload.company_id)

        job = self.jobs.get_by_id(payload.job_id, payload.company_id)
        if job.status in (ImportJobStatus.COMPLETED, ImportJobStatus.CANCELLED):
            log.info("import_job_already_finished", status=job.status.value)
            return job

        if job.status == ImportJobStatus.FAILED:
            # Redelivery by the runner after a failed attempt
            log.info("import_job_redelivered")
            job = self.jobs.reset_for_retry(payload.job_id)

        run = ImportRun(payload=payload)

        try:
            if job.status == ImportJobStatus.PENDING:
                job = self.jobs.mark_in_progress(payload.job_id, ImportJobPhase.FETCHING)
            else:
                log.warning("import_job_resumed", status=job.status.value)
            run.started_at = job.started_at or _now()
            run.phase = ImportJobPhase.FETCHING

            log.info("import_job_started", provider=payload.provider)
            self.events.emit_started(run.job_id, run.company_id, run.snapshot())
            self.events.emit_phase_changed(run.job_id, run.company_id, run.snapshot())

            products = self._fetch(run)
            self._ensure_not_cancelled(run)

            mappings, index = self._prepare(run)
            self._ensure_not_cancelled(run)

            self._create_products(run, products, mappings, index)

            if run.image_sets:
                self._import_images(run)

            return self._finalize(run, log)

        except ImportCancelled:
            log.info(
                "import_job_cancelled_during_run",
                phase=run.phase.value,
                processed=run.processed_products
            )
            return self.jobs.get_by_id(payload.job_id)

        except Exception as e:
            self._fail(run, e, log)
            raise

    # ===================
    # PHASES
    # ===================

    def _fetch(self, run: ImportRun) -> list[ExternalProduct]:
        payload = run.payload
        try:
            credentials = self.integrations.get_credentials(payload.integration_id, payload.client_id)
            provider = self.provider_factory(payload.provider)
            products = provider.fetch_all(credentials)
        except Exception as e:
            message = e.message if isinstance(e, AppError) else str(e)
            details = {"code": e.code} if isinstance(e, AppError) else {"error_type": type(e).__name__}
            raise ImportFetchError(message, details=details) from e

        selected_ids = payload.config.selected_product_ids
        if selected_ids:
            wanted = set(selected_ids)
            products = [p for p in products if p.id in wanted]

        run.total_products = len(products)
        run.progress = PROGRESS_FETCHED
        self.jobs.update_progress(run.snapshot())

        logger.info(
            "import_products_fetched",
            job_id=run.job_id,
            fetched=len(products),
            selected=bool(selected_ids)
        )
        return products

    def _prepare(self, run: ImportRun) -> tuple[list[FieldMapping], CatalogIndex]:
        self._set_phase(run, ImportJobPhase.MAPPING)

        config = run.payload.config
        mappings = self.profiles.resolve_mappings(
            run.company_id,
            run.payload.provider,
            profile_id=config.field_mapping_profile_id,
            custom_mappings=config.custom_mappings,
        )
        index = CatalogIndex.from_products(
            self.catalog.find_existing_by_company(run.company_id),
            run.payload.provider,
        )

        logger.info(
            "import_mapping_prepared",
            job_id=run.job_id,
            mappings=len(mappings),
            existing_skus=len(index.skus),
            existing_external_ids=len(index.external_ids)
        )
        return mappings, index

    def _create_products(
        self,
        run: ImportRun,
        products: list[ExternalProduct],
        mappings: list[FieldMapping],
        index: CatalogIndex
    ) -> None:
        self._set_phase(run, ImportJobPhase.CREATING)
        strategy = effective_conflict_strategy(run.payload.config)
        run.stage_started = time.monotonic()

        logger.debug("import_conflict_strategy", job_id=run.job_id, strategy=strategy.value)

        for start in range(0, len(products), self.batch_size):
            self._ensure_not_cancelled(run)

            for product in products[start:start + self.batch_size]:
                run.record(self._process_record(run, product, mappings, index, strategy))

                if run.processed_products % self.progress_interval == 0:
                    self._report_products(run, product.name)

        if run.processed_products % self.progress_interval != 0:
            self._report_products(run, None)

    def _process_record(
        self,
        run: ImportRun,
        product: ExternalProduct,
        mappings: list[FieldMapping],
        index: CatalogIndex,
        strategy: ConflictStrategy
    ) -> RecordOutcome:
        try:
            result = self.mapping.apply_mappings(product, mappings)
        except Exception as e:
            return self._record_error(run, product, ImportErrorCode.MAPPING_FAILED, str(e))

        # Conflicts are checked on the SKU that will be written
        sku = effective_sku(product, result.data)
        existing_id = index.existing_id_for(product.id)
        is_duplicate_sku = index.has_sku(sku)
        modified_sku = None
        update_id = None

        if existing_id or is_duplicate_sku:
            resolution = resolve_conflict(
                product.id, sku, existing_id, is_duplicate_sku, strategy, index.skus
            )
            self.events.emit_conflict_detected(run.job_id, run.company_id, resolution.conflict)

            if resolution.skip:
                self.events.emit_product_skipped(
                    run.job_id, run.company_id, product.id, sku,
                    reason=resolution.conflict.conflict_type.value
                )
                return RecordOutcome.SKIPPED

            modified_sku = resolution.modified_sku
            update_id = resolution.existing_id_to_update

        if not result.validation.is_valid:
            return self._record_error(
                run,
                product,
                ImportErrorCode.VALIDATION_FAILED,
                "; ".join(e.message for e in result.validation.errors),
                details={"validation_errors": [e.model_dump(mode="json") for e in result.validation.errors]},
            )

        try:
            product_id, sku = self._write_product(run, product, result.data, modified_sku or sku, update_id, strategy)
        except Exception as e:
            message = e.message if isinstance(e, AppError) else str(e)
            return self._record_error(run, product, ImportErrorCode.DATABASE_ERROR, message)

        index.record_write(product_id, product.id, sku)
        run.imported_ids.append(product_id)
        self.events.emit_product_imported(run.job_id, run.company_id, product_id, sku)

        if run.payload.config.import_images and product.images:
            run.image_sets.append((product_id, list(product.images)))
            run.total_images += len(product.images)

        return RecordOutcome.IMPORTED

    def _import_images(self, run: ImportRun) -> None:
        payload = run.payload
        credentials = self.integrations.resolve_storage_credentials(run.company_id, payload.client_id)

        if credentials is None:
            logger.warning("import_images_skipped_no_credentials", job_id=run.job_id)
            run.errors.append(ImportJobError(
                message="Image import skipped: No storage integration configured",
                code=ImportErrorCode.NO_S3_CREDENTIALS,
            ))
            return

        self._ensure_not_cancelled(run)
        self._set_phase(run, ImportJobPhase.DOWNLOADING_IMAGES)
        run.stage_started = time.monotonic()

        logger.info(
            "import_images_started",
            job_id=run.job_id,
            products=len(run.image_sets),
            images=run.total_images
        )

        for position, (product_id, images) in enumerate(run.image_sets):
            self._ensure_not_cancelled(run)
            if position == 0:
                self._set_phase(run, ImportJobPhase.UPLOADING_IMAGES)

            done_before = run.processed_images

            def on_progress(image_progress: ImageImportProgress) -> None:
                self._emit_image_progress(run, done_before + image_progress.processed, image_progress.current_image)

            try:
                results = self.images.import_product_images(
                    images,
                    product_id,
                    run.job_id,
                    credentials,
                    generate_thumbnails=payload.config.generate_thumbnails,
                    on_progress=on_progress,
                )
                self.images.update_product_images(product_id, results, import_source=payload.provider)

                for failed in (r for r in results if not r.success):
                    run.errors.append(ImportJobError(
                        message=f"Image import failed: {failed.error}",
                        code=failed.error_code or ImportErrorCode.IMAGE_IMPORT_ERROR,
                        product_id=product_id,
                        details={"original_url": failed.original_url},
                    ))
            except Exception as e:
                message = e.message if isinstance(e, AppError) else str(e)
                logger.warning("import_product_images_failed", job_id=run.job_id, product_id=product_id, error=message)
                run.errors.append(ImportJobError(
                    message=message,
                    code=ImportErrorCode.IMAGE_IMPORT_ERROR,
                    product_id=product_id,
                ))

            run.processed_images = done_before + len(images)
            self._report_images(run, None)

        if payload.config.generate_thumbnails:
            self._set_phase(run, ImportJobPhase.GENERATING_THUMBNAILS)

    def _finalize(self, run: ImportRun, log) -> ImportJobResponse:
        self._ensure_not_cancelled(run)
        run.progress = PROGRESS_IMAGES_DONE
        run.current_item = None
        run.estimated_seconds_remaining = None
        self._set_phase(run, ImportJobPhase.FINALIZING)

        final = run.snapshot().advance(
            status=ImportJobStatus.COMPLETED,
            phase=ImportJobPhase.DONE,
            progress=PROGRESS_DONE,
            completed_at=_now(),
        )

        try:
            job = self.jobs.mark_completed(final, run.errors, run.imported_ids)
        except InvalidStatusTransitionError:
            log.info("import_job_not_completed_status_changed")
            raise ImportCancelled()

        self.events.emit_completed(run.job_id, run.company_id, final)

        log.info(
            "import_job_completed",
            imported=run.imported_count,
            skipped=run.skipped_count,
            errors=run.error_count,
            images=f"{run.processed_images}/{run.total_images}"
        )
        return job

    def _fail(self, run: ImportRun, error: Exception, log) -> None:
        code = ImportErrorCode.FETCH_FAILED if isinstance(error, ImportFetchError) else ImportErrorCode.UNKNOWN_ERROR
        message = error.message if isinstance(error, AppError) else (str(error) or "Unknown error")
        failure = ImportJobError(message=message, code=code)
        run.errors.append(failure)

        log.error(
            "import_job_failed",
            code=code.value,
            error=message,
            phase=run.phase.value,
            error_type=type(error).__name__
        )

        try:
            self.jobs.mark_failed(run.job_id, run.errors, run.snapshot())
        except Exception as persist_error:
            log.error("import_job_fail_persist_failed", error=str(persist_error))

        self.events.emit_failed(run.job_id, run.company_id, failure)

    # ===================
    # WRITES
    # ===================

    def _write_product(
        self,
        run: ImportRun,
        product: ExternalProduct,
        data: dict[str, Any],
        sku: str,
        update_id: Optional[str],
        strategy: ConflictStrategy
    ) -> tuple[str, str]:
        """
        Create or update the catalog product.

        Returns:
            (product_id, sku written)
        """
        fields = self._product_fields(run, product, data)

        if update_id:
            if strategy == ConflictStrategy.MERGE:
                existing = self.catalog.find_product_by_id(update_id)
                if existing is not None:
                    self.catalog.update_product(update_id, self._merge_fields(existing, fields))
                    return update_id, existing.get("sku") or sku
            else:
                row = self.catalog.update_product(update_id, fields)
                return update_id, row.get("sku") or sku

        row = self.catalog.create_product({
            **fields,
            "company_id": run.company_id,
            "sku": sku,
            "slug": product_slug(fields["name"], sku),
            "status": "DRAFT",
        })
        return row["id"], sku

    def _product_fields(self, run: ImportRun, product: ExternalProduct, data: dict[str, Any]) -> dict[str, Any]:
        """Columns written on create and update, with provenance."""
        fields = {
            "name": data.get("name") or product.name,
            "description": data["description"] if data.get("description") is not None else (product.description or ""),
            "price": data["price"] if data.get("price") is not None else product.price,
            "currency": data.get("currency") or product.currency or "USD",
            "import_source": run.payload.provider,
            "external_id": product.id,
            "external_sku": product.sku,
            "last_synced_at": _now().isoformat(),
        }
        custom = {k: v for k, v in data.items() if k not in PRODUCT_COLUMNS}
        if custom:
            fields["custom_fields"] = custom
        return fields

    @staticmethod
    def _merge_fields(existing: dict, incoming: dict[str, Any]) -> dict[str, Any]:
        """Incoming values only where the existing product is empty. Sync time always."""
        merged = {
            key: value
            for key, value in incoming.items()
            if key not in ("custom_fields", "last_synced_at") and _is_empty(existing.get(key))
        }
        if "custom_fields" in incoming:
            current = existing.get("custom_fields") or {}
            merged["custom_fields"] = {
                **incoming["custom_fields"],
                **{k: v for k, v in current.items() if not _is_empty(v)},
            }
        merged["last_synced_at"] = incoming["last_synced_at"]
        return merged

    # ===================
    # PROGRESS
    # ===================

    def _set_phase(self, run: ImportRun, phase: ImportJobPhase) -> None:
        if not is_valid_phase_transition(run.phase, phase):
            raise RuntimeError(f"Phase cannot move from {run.phase.value} to {phase.value}")
        run.phase = phase
        snapshot = run.snapshot()
        self.jobs.update_progress(snapshot)
        self.events.emit_phase_changed(run.job_id, run.company_id, snapshot)
        logger.debug("import_job_phase_changed", job_id=run.job_id, phase=phase.value)

    def _report_products(self, run: ImportRun, current_item: Optional[str]) -> None:
        run.progress = _scaled(PROGRESS_FETCHED, PROGRESS_PRODUCTS_DONE, run.processed_products, run.total_products)
        run.current_item = current_item
        run.estimated_seconds_remaining = _eta_seconds(run.stage_started, run.processed_products, run.total_products)
        snapshot = run.snapshot()
        self.jobs.update_progress(snapshot, errors=run.errors, imported_ids=run.imported_ids)
        self.events.emit_progress(run.job_id, run.company_id, snapshot)

    def _emit_image_progress(self, run: ImportRun, processed_images: int, current_image: Optional[str]) -> None:
        snapshot = run.snapshot().advance(
            processed_images=min(processed_images, run.total_images),
            progress=_scaled(PROGRESS_PRODUCTS_DONE, PROGRESS_IMAGES_DONE, processed_images, run.total_images),
            current_item=current_image,
            estimated_seconds_remaining=_eta_seconds(run.stage_started, processed_images, run.total_images),
        )
        self.events.emit_progress(run.job_id, run.company_id, snapshot)

    def _report_images(self, run: ImportRun, current_item: Optional[str]) -> None:
        run.progress = _scaled(PROGRESS_PRODUCTS_DONE, PROGRESS_IMAGES_DONE, run.processed_images, run.total_images)
        run.current_item = current_item
        run.estimated_seconds_remaining = _eta_seconds(run.stage_started, run.processed_images, run.total_images)
        snapshot = run.snapshot()
        self.jobs.update_progress(snapshot, errors=run.errors)
        self.events.emit_progress(run.job_id, run.company_id, snapshot)

    def _record_error(
        self,
        run: ImportRun,
        product: ExternalProduct,
        code: ImportErrorCode,
        message: str,
        details: Optional[dict] = None
    ) -> RecordOutcome:
        error = ImportJobError(
            message=message,
            code=code,
            product_id=product.id,
            sku=product.sku,
            details=details,
        )
        run.errors.append(error)
        logger.warning(
            "import_record_failed",
            job_id=run.job_id,
            external_id=product.id,
            sku=product.sku,
            code=code.value,
            error=message
        )
        self.events.emit_product_error(run.job_id, run.company_id, error)
        return RecordOutcome.ERROR

    def _ensure_not_cancelled(self, run: ImportRun) -> None:
        job = self.jobs.get_by_id(run.job_id)
        if job.status == ImportJobStatus.CANCELLED:
            raise ImportCancelled()


# Singleton instance
_product_import_processor: Optional[ProductImportProcessor] = None


def get_product_import_processor() -> ProductImportProcessor:
    """Get or create ProductImportProcessor instance."""
    global _product_import_processor
    if _product_import_processor is None:
        _product_import_processor = ProductImportProcessor()
    return _product_import_processor
