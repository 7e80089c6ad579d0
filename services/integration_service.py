"""
Integration service.

Reads a client's provider integrations (credentials for catalog
providers) and resolves object-storage credentials for image import,
falling back from the client's own storage integration to the
platform-shared one.
"""

from typing import Any, Optional
import structlog

from config import get_supabase_client, settings
from models.product_image import StorageCredentials
from exceptions import (
    IntegrationNotFoundError,
    IntegrationCredentialsMissingError,
    DatabaseError,
)

logger = structlog.get_logger(__name__)

STORAGE_PROVIDER = "SUPABASE_STORAGE"
ACTIVE = "ACTIVE"


class IntegrationService:
    """
    Client and platform integration lookups.

    Credentials are stored as JSON on the integration row.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "client_integrations"
        self.platform_table = "platform_integrations"

    # ===================
    # CLIENT INTEGRATIONS
    # ===================

    def get_integration(self, integration_id: str, client_id: str) -> dict:
        """
        Get a client's integration row.

        Raises:
            IntegrationNotFoundError: If no such integration for the client
        """
        logger.debug("getting_integration", integration_id=integration_id, client_id=client_id)

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", integration_id)
                .eq("client_id", client_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_integration_failed", integration_id=integration_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise IntegrationNotFoundError(integration_id)

        return result.data[0]

    def get_credentials(self, integration_id: str, client_id: str) -> dict[str, Any]:
        """
        Provider credentials of an integration.

        Raises:
            IntegrationNotFoundError: If the integration doesn't exist
            IntegrationCredentialsMissingError: If it has no credentials
        """
        integration = self.get_integration(integration_id, client_id)
        credentials = integration.get("credentials")
        if not credentials:
            raise IntegrationCredentialsMissingError(integration_id)
        return credentials

    # ===================
    # STORAGE CREDENTIALS
    # ===================

    def resolve_storage_credentials(self, company_id: str, client_id: str) -> Optional[StorageCredentials]:
        """
        Storage credentials for image import.

        Order: client's active storage integration, then the platform's
        shared one, then the platform's own bucket when a service key is
        configured.

        Returns:
            StorageCredentials, or None when nothing resolves
        """
        key_prefix = f"products/{company_id}/"

        try:
            client_rows = (
                self.db.table(self.table)
                .select("*")
                .eq("client_id", client_id)
                .eq("provider", STORAGE_PROVIDER)
                .eq("status", ACTIVE)
                .execute()
            ).data

            if client_rows:
                row = client_rows[0]
                logger.debug("storage_credentials_resolved", source="client", company_id=company_id)
                return self._to_storage_credentials("client", row, key_prefix)

            platform_rows = (
                self.db.table(self.platform_table)
                .select("*")
                .eq("provider", STORAGE_PROVIDER)
                .eq("is_shared_with_clients", True)
                .eq("status", ACTIVE)
                .execute()
            ).data
        except Exception as e:
            logger.error("resolve_storage_credentials_failed", company_id=company_id, error=str(e))
            raise DatabaseError("select", str(e))

        if platform_rows:
            logger.debug("storage_credentials_resolved", source="platform", company_id=company_id)
            return self._to_storage_credentials("platform", platform_rows[0], key_prefix)

        if settings.supabase_service_key:
            logger.debug("storage_credentials_resolved", source="platform_default", company_id=company_id)
            return StorageCredentials(
                source="platform",
                bucket=settings.image_storage_bucket,
                settings={"key_prefix": key_prefix},
            )

        logger.warning("storage_credentials_not_found", company_id=company_id, client_id=client_id)
        return None

    @staticmethod
    def _to_storage_credentials(source: str, row: dict, key_prefix: str) -> StorageCredentials:
        credentials = dict(row.get("credentials") or {})
        bucket = credentials.pop("bucket", None) or settings.image_storage_bucket
        credentials.setdefault("key_prefix", key_prefix)
        return StorageCredentials(
            source=source,
            integration_id=row.get("id"),
            bucket=bucket,
            settings=credentials,
        )


# Singleton instance
_integration_service: Optional[IntegrationService] = None


def get_integration_service() -> IntegrationService:
    """Get or create IntegrationService instance."""
    global _integration_service
    if _integration_service is None:
        _integration_service = IntegrationService()
    return _integration_service
