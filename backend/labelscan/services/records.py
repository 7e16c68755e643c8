"""Scan records handed to the caller.

Every path that reads a bottle (label OCR, vision reply, barcode) ends in a
``ScanResult``: either a ``ScannedRecord`` or a failure with a Dutch message
the app can show as-is.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


# Placeholders shown by the app when a field could not be read
DEFAULT_CATEGORY = "Wijn / Gedistilleerd"
UNKNOWN_PRODUCT = "Onbekend product"


class ConfidenceTier(str, Enum):
    """Coarse reliability bucket for a scan."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"  # Only ever used for failures


class RecordSource(str, Enum):
    """Where a record's fields came from."""
    OCR = "ocr"
    VISION = "vision"
    BARCODE = "barcode"


class FailureReason(str, Enum):
    """Why a scan produced no record."""
    LOW_YIELD = "low_yield"
    TIMEOUT = "timeout"
    ENGINE_ERROR = "engine_error"
    INVALID_REPLY = "invalid_reply"
    NOT_FOUND = "not_found"


FAILURE_MESSAGES = {
    FailureReason.LOW_YIELD: "Geen leesbare tekst gevonden. Maak een nieuwe foto of zoek handmatig.",
    FailureReason.TIMEOUT: "Het lezen van het etiket duurde te lang. Probeer het opnieuw of zoek handmatig.",
    FailureReason.ENGINE_ERROR: "Tekstherkenning mislukt. Probeer het opnieuw of zoek handmatig.",
    FailureReason.INVALID_REPLY: "Kon het antwoord niet verwerken. Probeer het opnieuw of zoek handmatig.",
    FailureReason.NOT_FOUND: "Product niet gevonden. Zoek handmatig.",
}


@dataclass(frozen=True)
class ScannedRecord:
    """Best-guess structured reading of a bottle."""
    raw_text: str
    brand: str
    product_name: str
    confidence_tier: ConfidenceTier
    category: str = DEFAULT_CATEGORY
    abv: Optional[str] = None
    volume: Optional[str] = None
    vintage: Optional[str] = None
    source: RecordSource = RecordSource.OCR


@dataclass
class ScanResult:
    """Outcome of one scan attempt."""
    record: Optional[ScannedRecord] = None
    failure: Optional[FailureReason] = None
    message: str = ""
    attempts: int = 0
    used_binary: bool = False
    processing_time_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.record is not None

    @property
    def confidence_tier(self) -> ConfidenceTier:
        if self.record is None:
            return ConfidenceTier.LOW
        return self.record.confidence_tier

    @classmethod
    def success(cls, record: ScannedRecord, **kwargs) -> "ScanResult":
        return cls(record=record, **kwargs)

    @classmethod
    def failed(cls, reason: FailureReason, detail: Optional[str] = None, **kwargs) -> "ScanResult":
        """Build a failure; ``detail`` is appended to the standard message."""
        message = FAILURE_MESSAGES[reason]
        if detail:
            message = f"{message} {detail}"
        return cls(failure=reason, message=message, **kwargs)
