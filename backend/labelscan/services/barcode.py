"""Barcode lookup against OpenFoodFacts."""

import re
import logging
from typing import Optional, Any, Dict

import httpx

from .records import (
    ConfidenceTier,
    DEFAULT_CATEGORY,
    FailureReason,
    RecordSource,
    ScannedRecord,
    ScanResult,
    UNKNOWN_PRODUCT,
)
from .extraction import extract_abv
from ..config import get_settings

logger = logging.getLogger(__name__)

BARCODE_PATTERN = re.compile(r"^\d{8,14}$")


class BarcodeLookupError(Exception):
    """OpenFoodFacts could not be reached or answered with garbage."""


def _first_text(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _category_from_tags(tags: Any) -> Optional[str]:
    """``"en:red-wines"`` -> ``"red wines"``."""
    if not isinstance(tags, list) or not tags:
        return None
    tag = str(tags[0])
    if ":" in tag:
        tag = tag.split(":", 1)[1]
    tag = tag.replace("-", " ").strip()
    return tag or None


def _abv_from_nutriments(nutriments: Any) -> Optional[str]:
    if not isinstance(nutriments, dict):
        return None
    value = nutriments.get("alcohol", nutriments.get("alcohol_value"))
    if value is None or value == "":
        return None
    return extract_abv(f"{value}%") or f"{value}%"


def record_from_openfoodfacts(payload: Dict[str, Any], barcode: str) -> ScanResult:
    """Map an OpenFoodFacts v2 product response onto a ScanResult."""
    product = payload.get("product") if isinstance(payload, dict) else None
    if not isinstance(payload, dict) or payload.get("status") == 0 or not isinstance(product, dict):
        logger.info(f"Barcode {barcode} not in OpenFoodFacts")
        return ScanResult.failed(FailureReason.NOT_FOUND)

    brands = _first_text(product.get("brands"))
    brand = brands.split(",")[0].strip() if brands else None
    name = _first_text(
        product.get("product_name"),
        product.get("product_name_nl"),
        product.get("product_name_en"),
    )
    if not brand and not name:
        logger.info(f"Barcode {barcode} found but has no brand or name")
        return ScanResult.failed(FailureReason.NOT_FOUND)

    quantity = _first_text(product.get("quantity"))
    raw_text = " ".join(part for part in (brands, name, quantity, barcode) if part)

    record = ScannedRecord(
        raw_text=raw_text,
        brand=brand or name,
        product_name=name or UNKNOWN_PRODUCT,
        category=_category_from_tags(product.get("categories_tags")) or DEFAULT_CATEGORY,
        abv=_abv_from_nutriments(product.get("nutriments")),
        volume=quantity,
        vintage=None,
        confidence_tier=ConfidenceTier.HIGH,
        source=RecordSource.BARCODE,
    )
    return ScanResult.success(record, attempts=1)


class BarcodeLookup:
    """Async OpenFoodFacts client."""

    def __init__(self, settings=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport

    async def lookup(self, barcode: str) -> ScanResult:
        """
        Look up a barcode.

        Raises:
            ValueError: If the barcode is not 8-14 digits
            BarcodeLookupError: On network errors or non-JSON replies
        """
        barcode = barcode.strip()
        if not BARCODE_PATTERN.match(barcode):
            raise ValueError("Barcode moet uit 8 tot 14 cijfers bestaan")

        url = f"{self.settings.openfoodfacts_url.rstrip('/')}/{barcode}.json"
        logger.info(f"Fetching product for barcode: {barcode}")

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.barcode_timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.error(f"Barcode lookup failed: {e}")
            raise BarcodeLookupError(str(e)) from e

        if response.status_code == 404:
            return ScanResult.failed(FailureReason.NOT_FOUND)
        if response.status_code >= 400:
            raise BarcodeLookupError(f"OpenFoodFacts returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise BarcodeLookupError("OpenFoodFacts returned invalid JSON") from e

        return record_from_openfoodfacts(payload, barcode)
