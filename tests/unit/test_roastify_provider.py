"""
Unit tests for the Roastify catalog provider.

Run: pytest tests/unit/test_roastify_provider.py -v
"""

import pytest
import requests
from unittest.mock import MagicMock

from integrations.providers import get_catalog_provider, supported_providers
from integrations.providers.roastify import (
    RoastifyProduct,
    RoastifyProvider,
    cents_to_major,
    normalize_product,
)
from exceptions import ExternalServiceError, UnsupportedProviderError, ValidationError


def _response(body: dict, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.ok = status_code < 400
    response.status_code = status_code
    response.reason = "Error" if status_code >= 400 else "OK"
    response.json.return_value = body
    return response


@pytest.fixture
def raw_product() -> dict:
    return {
        "id": "rst-1",
        "title": "Ethiopia Kochere",
        "description": "<p>Floral</p>",
        "imageUrl": "https://cdn.roastify.app/main.jpg",
        "images": [
            {"id": "img-1", "url": "https://cdn.roastify.app/main.jpg"},
            {"id": "img-2", "url": "https://cdn.roastify.app/side.jpg", "altText": "Side"},
        ],
        "variants": [
            {"id": "var-1", "sku": "ETH-250", "title": "250g", "retailPrice": 1450, "stockQty": 12, "inStock": True},
            {"id": "var-2", "sku": "ETH-1KG", "size": "1kg", "retailPrice": 4800},
        ],
        "productType": "coffee",
        "roastLevel": "light",
        "origin": "Ethiopia",
    }


class TestNormalizeProduct:
    """Tests for normalize_product()"""

    def test_prices_converted_from_cents(self, raw_product):
        product = normalize_product(RoastifyProduct.model_validate(raw_product))

        assert product.price == 14.5
        assert [v.price for v in product.variants] == [14.5, 48.0]

    def test_images_main_first_without_duplicates(self, raw_product):
        product = normalize_product(RoastifyProduct.model_validate(raw_product))

        assert [i.url for i in product.images] == [
            "https://cdn.roastify.app/main.jpg",
            "https://cdn.roastify.app/side.jpg",
        ]
        assert product.images[0].id == "rst-1-main"
        assert [i.position for i in product.images] == [0, 1]
        assert product.images[1].alt_text == "Side"

    def test_sku_falls_back_to_first_variant_then_id(self, raw_product):
        assert normalize_product(RoastifyProduct.model_validate(raw_product)).sku == "ETH-250"

        raw_product["variants"] = []
        assert normalize_product(RoastifyProduct.model_validate(raw_product)).sku == "rst-1"

    def test_variant_defaults(self, raw_product):
        product = normalize_product(RoastifyProduct.model_validate(raw_product))
        second = product.variants[1]

        assert second.name == "1kg"
        assert second.inventory == 0
        assert second.in_stock is True

    def test_price_without_variants_uses_product_price(self, raw_product):
        raw_product["variants"] = []
        raw_product["price"] = 999

        assert normalize_product(RoastifyProduct.model_validate(raw_product)).price == 9.99

    def test_missing_name_and_metadata(self):
        product = normalize_product(RoastifyProduct.model_validate({"id": "rst-2", "origin": "Kenya"}))

        assert product.name == "Unnamed Product"
        assert product.currency == "USD"
        assert product.metadata == {"origin": "Kenya"}
        assert product.description == ""

    def test_cents_to_major_none(self):
        assert cents_to_major(None) == 0.0


class TestRoastifyProviderFetch:
    """Tests for RoastifyProvider.fetch_all()"""

    def test_follows_cursor_pagination(self, raw_product):
        session = MagicMock()
        session.get.side_effect = [
            _response({"products": [raw_product], "pageInfo": {"hasNextPage": True, "endCursor": "c1"}}),
            _response({"products": [{**raw_product, "id": "rst-2"}], "pageInfo": {"hasNextPage": False}}),
        ]
        provider = RoastifyProvider(base_url="https://api.test/v1/", page_size=1, session=session)

        products = provider.fetch_all({"api_key": "secret"})

        assert [p.id for p in products] == ["rst-1", "rst-2"]
        first_call, second_call = session.get.call_args_list
        assert first_call.args[0] == "https://api.test/v1/products"
        assert first_call.kwargs["headers"]["x-api-key"] == "secret"
        assert "cursor" not in first_call.kwargs["params"]
        assert second_call.kwargs["params"]["cursor"] == "c1"

    def test_repeated_cursor_stops(self, raw_product):
        session = MagicMock()
        page = {"products": [raw_product], "pageInfo": {"hasNextPage": True, "endCursor": "same"}}
        session.get.side_effect = [_response(page), _response(page), _response(page)]
        provider = RoastifyProvider(session=session)

        provider.fetch_raw({"apiKey": "secret"})

        assert session.get.call_count == 2

    def test_unexpected_body_stops(self):
        session = MagicMock()
        session.get.return_value = _response({"data": []})
        provider = RoastifyProvider(session=session)

        assert provider.fetch_all({"api_key": "secret"}) == []

    def test_missing_api_key(self):
        provider = RoastifyProvider(session=MagicMock())

        with pytest.raises(ValidationError) as exc:
            provider.fetch_all({})

        assert exc.value.code == "INTEGRATION_CREDENTIALS_MISSING"

    def test_http_error_raises_external_service_error(self):
        session = MagicMock()
        session.get.return_value = _response({"message": "Invalid API key"}, status_code=401)
        provider = RoastifyProvider(session=session)

        with pytest.raises(ExternalServiceError) as exc:
            provider.fetch_all({"api_key": "bad"})

        assert "401" in exc.value.message
        assert "Invalid API key" in exc.value.message
        assert exc.value.code == "ROASTIFY_ERROR"

    def test_network_error_raises_external_service_error(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        provider = RoastifyProvider(session=session)

        with pytest.raises(ExternalServiceError):
            provider.fetch_all({"api_key": "secret"})


class TestProviderRegistry:
    """Tests for get_catalog_provider()"""

    def test_lookup_is_case_insensitive(self):
        assert isinstance(get_catalog_provider("roastify"), RoastifyProvider)

    def test_unknown_provider(self):
        with pytest.raises(UnsupportedProviderError):
            get_catalog_provider("ETSY")

    def test_supported_providers(self):
        assert supported_providers() == ["ROASTIFY"]
