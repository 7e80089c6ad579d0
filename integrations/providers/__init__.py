"""
Catalog provider adapters.

get_catalog_provider() maps a provider key to its adapter.
"""

from typing import Callable

from exceptions import UnsupportedProviderError
from integrations.providers.base import CatalogProvider
from integrations.providers.roastify import RoastifyProvider

PROVIDERS: dict[str, Callable[[], CatalogProvider]] = {
    RoastifyProvider.provider: RoastifyProvider,
}


def supported_providers() -> list[str]:
    return sorted(PROVIDERS)


def get_catalog_provider(provider: str) -> CatalogProvider:
    """
    Adapter for a provider key.

    Raises:
        UnsupportedProviderError: If no adapter exists
    """
    factory = PROVIDERS.get((provider or "").upper())
    if factory is None:
        raise UnsupportedProviderError(provider, supported_providers())
    return factory()


__all__ = [
    "CatalogProvider",
    "RoastifyProvider",
    "get_catalog_provider",
    "supported_providers",
]
