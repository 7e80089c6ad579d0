"""
Business logic services.

Each service handles one domain area. The import pipeline services
(processor, job runner, product import service) depend on the provider
adapters and are imported from their modules directly.
"""

from services.field_mapping_service import FieldMappingService, get_field_mapping_service
from services.field_mapping_profile_service import FieldMappingProfileService, get_field_mapping_profile_service
from services.conflict_resolver import CatalogIndex, ConflictResolution, resolve_conflict
from services.import_job_service import ImportJobService, get_import_job_service
from services.import_event_service import (
    EventSink,
    EventSubscription,
    ImportEventService,
    get_import_event_service,
)
from services.integration_service import IntegrationService, get_integration_service
from services.catalog_store import CatalogStore, SupabaseCatalogStore, get_catalog_store

__all__ = [
    "FieldMappingService",
    "get_field_mapping_service",
    "FieldMappingProfileService",
    "get_field_mapping_profile_service",
    "CatalogIndex",
    "ConflictResolution",
    "resolve_conflict",
    "ImportJobService",
    "get_import_job_service",
    "EventSink",
    "EventSubscription",
    "ImportEventService",
    "get_import_event_service",
    "IntegrationService",
    "get_integration_service",
    "CatalogStore",
    "SupabaseCatalogStore",
    "get_catalog_store",
]
