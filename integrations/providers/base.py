"""
Catalog provider contract.

A provider adapter fetches a company's full catalog from a third-party
commerce platform and normalizes every raw product to ExternalProduct.
Provider-specific payload shapes never leave the adapter.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping

from models.external_product import ExternalProduct


class CatalogProvider(ABC):
    """
    Base class for provider adapters.

    Subclasses set `provider` (the key stored on integrations and jobs)
    and implement fetch_all().
    """

    provider: str = ""

    @abstractmethod
    def fetch_all(self, credentials: Mapping[str, Any]) -> list[ExternalProduct]:
        """
        Fetch every product, following pagination.

        Args:
            credentials: Integration credentials (provider-specific keys)

        Returns:
            Fully materialized, normalized product list

        Raises:
            ExternalServiceError: If the provider request fails
        """
        raise NotImplementedError
