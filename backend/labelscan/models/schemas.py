"""Pydantic schemas for API requests and responses."""

from pydantic import BaseModel
from typing import Optional

from ..services.records import ConfidenceTier, FailureReason, RecordSource, ScanResult


class ScannedRecordOut(BaseModel):
    """Structured best-guess reading of a bottle."""
    raw_text: str
    brand: str
    product_name: str
    category: str
    abv: Optional[str] = None
    volume: Optional[str] = None
    vintage: Optional[str] = None
    confidence: ConfidenceTier
    source: RecordSource

    class Config:
        json_schema_extra = {
            "example": {
                "raw_text": "CHATEAU EXAMPLE\nGrand Vin de Bordeaux\n2018 13.5% 750ml",
                "brand": "CHATEAU EXAMPLE",
                "product_name": "Onbekend product",
                "category": "Rode wijn",
                "abv": "13.5%",
                "volume": "750ml",
                "vintage": "2018",
                "confidence": "high",
                "source": "ocr"
            }
        }


class ScanResponse(BaseModel):
    """Response for a single scan."""
    success: bool
    confidence: ConfidenceTier = ConfidenceTier.LOW
    record: Optional[ScannedRecordOut] = None
    failure_reason: Optional[FailureReason] = None
    error: Optional[str] = None
    attempts: int = 0
    used_binary: bool = False
    processing_time_ms: int = 0

    @classmethod
    def from_result(cls, result: ScanResult) -> "ScanResponse":
        record = None
        if result.record is not None:
            r = result.record
            record = ScannedRecordOut(
                raw_text=r.raw_text,
                brand=r.brand,
                product_name=r.product_name,
                category=r.category,
                abv=r.abv,
                volume=r.volume,
                vintage=r.vintage,
                confidence=r.confidence_tier,
                source=r.source,
            )
        return cls(
            success=result.ok,
            confidence=result.confidence_tier,
            record=record,
            failure_reason=result.failure,
            error=result.message or None,
            attempts=result.attempts,
            used_binary=result.used_binary,
            processing_time_ms=int(result.processing_time_ms),
        )


class BatchScanItem(BaseModel):
    """Result for one image in a batch."""
    filename: str
    success: bool
    result: Optional[ScanResponse] = None
    error: Optional[str] = None


class BatchScanResponse(BaseModel):
    """Response for batch scanning."""
    success: bool
    total: int
    recognized: int
    failed: int
    results: list[BatchScanItem]
    processing_time_ms: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "Ongeldig bestandstype",
                "detail": "Toegestane formaten: JPEG, JPG, PNG, WEBP"
            }
        }


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    ocr_ready: bool
    vision_assist: bool
