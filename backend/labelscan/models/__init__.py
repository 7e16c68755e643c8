"""Pydantic models for request/response schemas."""

from .schemas import (
    ScannedRecordOut,
    ScanResponse,
    BatchScanItem,
    BatchScanResponse,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    "ScannedRecordOut",
    "ScanResponse",
    "BatchScanItem",
    "BatchScanResponse",
    "ErrorResponse",
    "HealthResponse",
]
