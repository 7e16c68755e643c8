"""Tests for the OpenFoodFacts barcode lookup."""

import asyncio

import httpx
import pytest

from labelscan.services.barcode import BarcodeLookup, BarcodeLookupError, record_from_openfoodfacts
from labelscan.services.records import ConfidenceTier, DEFAULT_CATEGORY, FailureReason, RecordSource


PRODUCT_PAYLOAD = {
    "code": "8410415520628",
    "status": 1,
    "product": {
        "brands": "Bodegas Ejemplo, Grupo Vino",
        "product_name": "Rioja Crianza",
        "quantity": "75 cl",
        "categories_tags": ["en:red-wines", "en:wines"],
        "nutriments": {"alcohol": 13.5},
    },
}


def lookup_with(handler, settings):
    return BarcodeLookup(settings, transport=httpx.MockTransport(handler))


class TestRecordFromOpenFoodFacts:
    """Test mapping of product payloads."""

    def test_full_product(self):
        """Test a complete product maps onto a barcode record."""
        result = record_from_openfoodfacts(PRODUCT_PAYLOAD, "8410415520628")

        record = result.record
        assert record.brand == "Bodegas Ejemplo"
        assert record.product_name == "Rioja Crianza"
        assert record.volume == "75 cl"
        assert record.abv == "13.5%"
        assert record.category == "red wines"
        assert record.source == RecordSource.BARCODE
        assert record.confidence_tier == ConfidenceTier.HIGH
        assert "8410415520628" in record.raw_text

    def test_localized_name_fallback(self):
        """Test the Dutch product name is used when the generic one is missing."""
        payload = {"status": 1, "product": {"product_name_nl": "Jonge Jenever"}}

        result = record_from_openfoodfacts(payload, "87654321")

        assert result.record.brand == "Jonge Jenever"
        assert result.record.category == DEFAULT_CATEGORY
        assert result.record.abv is None

    def test_status_zero_not_found(self):
        """Test unknown products are a not-found failure."""
        result = record_from_openfoodfacts({"status": 0, "status_verbose": "product not found"}, "87654321")

        assert result.failure == FailureReason.NOT_FOUND
        assert result.record is None

    def test_nameless_product_not_found(self):
        """Test products without brand or name are not usable."""
        result = record_from_openfoodfacts({"status": 1, "product": {"quantity": "1 l"}}, "87654321")
        assert result.failure == FailureReason.NOT_FOUND


class TestBarcodeLookup:
    """Test the async HTTP client."""

    def test_lookup_success(self, settings):
        """Test a found product is fetched and mapped."""
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json=PRODUCT_PAYLOAD)

        result = asyncio.run(lookup_with(handler, settings).lookup(" 8410415520628 "))

        assert result.ok
        assert seen == ["https://world.openfoodfacts.org/api/v2/product/8410415520628.json"]

    def test_lookup_404(self, settings):
        """Test HTTP 404 is a not-found failure."""
        result = asyncio.run(lookup_with(lambda r: httpx.Response(404), settings).lookup("87654321"))
        assert result.failure == FailureReason.NOT_FOUND

    def test_server_error(self, settings):
        """Test 5xx responses raise."""
        with pytest.raises(BarcodeLookupError):
            asyncio.run(lookup_with(lambda r: httpx.Response(503), settings).lookup("87654321"))

    def test_invalid_json(self, settings):
        """Test non-JSON bodies raise."""
        with pytest.raises(BarcodeLookupError):
            asyncio.run(lookup_with(lambda r: httpx.Response(200, text="<html>"), settings).lookup("87654321"))

    def test_network_error(self, settings):
        """Test connection errors raise."""
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        with pytest.raises(BarcodeLookupError):
            asyncio.run(lookup_with(handler, settings).lookup("87654321"))

    @pytest.mark.parametrize("barcode", ["1234567", "123456789012345", "12345abc", ""])
    def test_invalid_barcode(self, settings, barcode):
        """Test malformed barcodes are rejected before any request."""
        with pytest.raises(ValueError):
            asyncio.run(lookup_with(lambda r: httpx.Response(200, json={}), settings).lookup(barcode))
