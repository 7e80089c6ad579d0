"""
Field mapping profile service.

CRUD for named mapping profiles plus resolution of the mapping list a
job runs with:

    custom mappings > named profile > company default profile > built-in

At most one profile per (company, provider) is the default. A profile
becomes the default through the set_default_field_mapping_profile
database function, which clears the flag on the others in the same
transaction (migrations/).
"""

from typing import Iterable, Optional
from datetime import datetime, timezone
import structlog

from config import get_supabase_client
from models.field_mapping import FieldMapping
from models.field_mapping_profile import (
    FieldMappingProfileCreate,
    FieldMappingProfileUpdate,
    FieldMappingProfileResponse,
)
from services.field_mapping_service import get_field_mapping_service
from exceptions import FieldMappingProfileNotFoundError, DatabaseError

logger = structlog.get_logger(__name__)


def _dump_mappings(mappings: Iterable[FieldMapping]) -> list[dict]:
    # exclude_unset keeps "no default" distinct from "default is null"
    return [m.model_dump(mode="json", exclude_unset=True) for m in mappings]


class FieldMappingProfileService:
    """
    Field mapping profile business logic.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "field_mapping_profiles"

    # ===================
    # READ OPERATIONS
    # ===================

    def get_all(self, company_id: str, provider: Optional[str] = None) -> list[FieldMappingProfileResponse]:
        """
        Profiles of a company, default first, then newest.
        """
        logger.info("getting_field_mapping_profiles", company_id=company_id, provider=provider)

        try:
            query = self.db.table(self.table).select("*").eq("company_id", company_id)
            if provider:
                query = query.eq("provider", provider.upper())
            result = (
                query
                .order("is_default", desc=True)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            logger.error("get_field_mapping_profiles_failed", company_id=company_id, error=str(e))
            raise DatabaseError("select", str(e))

        return [self._row_to_response(row) for row in result.data]

    def find(self, profile_id: str, company_id: str) -> Optional[FieldMappingProfileResponse]:
        """Profile of this company, or None."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", profile_id)
                .eq("company_id", company_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_field_mapping_profile_failed", profile_id=profile_id, error=str(e))
            raise DatabaseError("select", str(e))

        return self._row_to_response(result.data[0]) if result.data else None

    def get_by_id(self, profile_id: str, company_id: str) -> FieldMappingProfileResponse:
        """
        Raises:
            FieldMappingProfileNotFoundError: If profile doesn't exist for the company
        """
        profile = self.find(profile_id, company_id)
        if profile is None:
            raise FieldMappingProfileNotFoundError(profile_id)
        return profile

    def get_default(self, company_id: str, provider: str) -> Optional[FieldMappingProfileResponse]:
        """The company's default profile for a provider, if any."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("company_id", company_id)
                .eq("provider", provider.upper())
                .eq("is_default", True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_default_profile_failed", company_id=company_id, error=str(e))
            raise DatabaseError("select", str(e))

        return self._row_to_response(result.data[0]) if result.data else None

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(
        self,
        company_id: str,
        data: FieldMappingProfileCreate,
        created_by: Optional[str] = None
    ) -> FieldMappingProfileResponse:
        """Create a profile. A new default replaces the previous one."""
        logger.info(
            "creating_field_mapping_profile",
            company_id=company_id,
            provider=data.provider,
            name=data.name,
            is_default=data.is_default
        )

        # is_default is set afterwards by _make_default
        row = {
            "company_id": company_id,
            "provider": data.provider,
            "name": data.name,
            "mappings": _dump_mappings(data.mappings),
            "is_default": False,
            "created_by": created_by,
        }

        try:
            result = self.db.table(self.table).insert(row).execute()
        except Exception as e:
            logger.error("create_field_mapping_profile_failed", company_id=company_id, error=str(e))
            raise DatabaseError("insert", str(e))

        if not result.data:
            raise DatabaseError("insert", "No data returned from insert")

        profile = self._row_to_response(result.data[0])
        if data.is_default:
            profile = self._make_default(profile.id, company_id, profile.provider)

        logger.info("field_mapping_profile_created", profile_id=profile.id)
        return profile

    def update(
        self,
        profile_id: str,
        company_id: str,
        data: FieldMappingProfileUpdate
    ) -> FieldMappingProfileResponse:
        """
        Update provided fields only.

        Raises:
            FieldMappingProfileNotFoundError: If profile doesn't exist
        """
        existing = self.get_by_id(profile_id, company_id)

        update_data = {}
        if data.name is not None:
            update_data["name"] = data.name
        if data.mappings is not None:
            update_data["mappings"] = _dump_mappings(data.mappings)
        if data.is_default is False:
            update_data["is_default"] = False

        if not update_data:
            if data.is_default:
                return self._make_default(profile_id, company_id, existing.provider)
            return existing

        update_data["updated_at"] = datetime.now(timezone.utc).isoformat()

        try:
            result = (
                self.db.table(self.table)
                .update(update_data)
                .eq("id", profile_id)
                .eq("company_id", company_id)
                .execute()
            )
        except Exception as e:
            logger.error("update_field_mapping_profile_failed", profile_id=profile_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            raise FieldMappingProfileNotFoundError(profile_id)

        logger.info("field_mapping_profile_updated", profile_id=profile_id, fields=list(update_data))
        if data.is_default:
            return self._make_default(profile_id, company_id, existing.provider)
        return self._row_to_response(result.data[0])

    def delete(self, profile_id: str, company_id: str) -> bool:
        """
        Raises:
            FieldMappingProfileNotFoundError: If profile doesn't exist
        """
        self.get_by_id(profile_id, company_id)

        try:
            self.db.table(self.table).delete().eq("id", profile_id).eq("company_id", company_id).execute()
        except Exception as e:
            logger.error("delete_field_mapping_profile_failed", profile_id=profile_id, error=str(e))
            raise DatabaseError("delete", str(e))

        logger.info("field_mapping_profile_deleted", profile_id=profile_id)
        return True

    def _make_default(self, profile_id: str, company_id: str, provider: str) -> FieldMappingProfileResponse:
        """
        Flag one profile as the default and clear the others, atomically.

        Raises:
            FieldMappingProfileNotFoundError: If the profile is gone
        """
        try:
            result = self.db.rpc(
                "set_default_field_mapping_profile",
                {"p_profile_id": profile_id, "p_company_id": company_id}
            ).execute()
        except Exception as e:
            logger.error("set_default_profile_failed", profile_id=profile_id, company_id=company_id, error=str(e))
            raise DatabaseError("set_default", str(e))

        rows = result.data
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            raise FieldMappingProfileNotFoundError(profile_id)

        logger.info("default_field_mapping_profile_set", profile_id=profile_id, provider=provider.upper())
        return self._row_to_response(rows[0])

    # ===================
    # RESOLUTION
    # ===================

    def resolve_mappings(
        self,
        company_id: str,
        provider: str,
        profile_id: Optional[str] = None,
        custom_mappings: Optional[Iterable[FieldMapping]] = None
    ) -> list[FieldMapping]:
        """
        Mapping list a job or preview runs with.

        A named profile that doesn't exist for the company falls through
        to the default profile, then to the built-in mappings.
        """
        custom = list(custom_mappings or [])
        if custom:
            logger.debug("mappings_resolved", source="custom", count=len(custom))
            return custom

        if profile_id:
            profile = self.find(profile_id, company_id)
            if profile is not None:
                logger.debug("mappings_resolved", source="profile", profile_id=profile_id)
                return profile.mappings
            logger.warning("mapping_profile_not_found", profile_id=profile_id, company_id=company_id)

        default = self.get_default(company_id, provider)
        if default is not None:
            logger.debug("mappings_resolved", source="default_profile", profile_id=default.id)
            return default.mappings

        logger.debug("mappings_resolved", source="built_in", provider=provider)
        return get_field_mapping_service().default_mappings(provider)

    # ===================
    # HELPERS
    # ===================

    def _row_to_response(self, row: dict) -> FieldMappingProfileResponse:
        return FieldMappingProfileResponse(
            id=row["id"],
            company_id=row["company_id"],
            provider=row["provider"],
            name=row["name"],
            mappings=row.get("mappings") or [],
            is_default=row.get("is_default", False),
            created_by=row.get("created_by"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
        )


# Singleton instance
_field_mapping_profile_service: Optional[FieldMappingProfileService] = None


def get_field_mapping_profile_service() -> FieldMappingProfileService:
    """Get or create FieldMappingProfileService instance."""
    global _field_mapping_profile_service
    if _field_mapping_profile_service is None:
        _field_mapping_profile_service = FieldMappingProfileService()
    return _field_mapping_profile_service
