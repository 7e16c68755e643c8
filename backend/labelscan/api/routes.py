"""API route definitions."""

import asyncio
import time
from fastapi import APIRouter, UploadFile, File, Form, HTTPException
from typing import Optional, List
import logging

from ..models import (
    ScanResponse,
    BatchScanItem,
    BatchScanResponse,
    ErrorResponse,
    HealthResponse,
)
from ..services import (
    ImagePreprocessor,
    EasyOCREngine,
    LabelScanner,
    DecodeError,
    EngineUnavailable,
    acquire_engine,
    VisionAssistClient,
    VisionAssistError,
    parse_vision_reply,
    BarcodeLookup,
    BarcodeLookupError,
    FailureReason,
    ScanResult,
)
from ..config import get_settings
from .. import __version__

logger = logging.getLogger(__name__)
router = APIRouter()

# Initialize services
preprocessor = ImagePreprocessor()
ocr_engine = EasyOCREngine()
scanner = LabelScanner(ocr_engine, preprocessor=preprocessor)
vision_client = VisionAssistClient()
barcode_lookup = BarcodeLookup()


async def _ensure_engine_ready() -> None:
    """One readiness wait per request; the engine is normally warmed at startup."""
    if scanner.engine.is_ready:
        return
    try:
        await acquire_engine(scanner.engine, get_settings().engine_ready_timeout_s)
    except EngineUnavailable as e:
        logger.error(f"OCR engine unavailable: {e}")
        raise HTTPException(status_code=503, detail="OCR service not ready. Please try again in a moment.")


@router.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Check API health and OCR readiness."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        ocr_ready=scanner.engine.is_ready,
        vision_assist=vision_client.enabled,
    )


@router.post(
    "/scan",
    response_model=ScanResponse,
    responses={
        503: {"model": ErrorResponse, "description": "OCR engine unavailable"}
    },
    tags=["Scan"]
)
async def scan_label(
    image: UploadFile = File(..., description="Bottle label photo"),
    retry_binary: Optional[bool] = Form(None, description="Allow the binary-variant retry"),
    max_dimension: Optional[int] = Form(None, ge=200, le=4000, description="Longer side after resize"),
):
    """
    Read a bottle label photo.

    Returns the best-guess brand, product name, category, ABV, volume and
    vintage, or a failure the app can show as "retake or search manually".
    """
    try:
        image_bytes = await image.read()
    except Exception as e:
        logger.error(f"Failed to read uploaded image: {e}")
        raise HTTPException(status_code=400, detail="Failed to read uploaded image")

    is_valid, error_msg = preprocessor.validate_image(image_bytes, image.filename or "unknown")
    if not is_valid:
        return ScanResponse(success=False, error=error_msg)

    await _ensure_engine_ready()

    try:
        result = await scanner.scan(image_bytes, retry_binary=retry_binary, max_dimension=max_dimension)
    except DecodeError as e:
        logger.warning(f"Upload could not be decoded: {e}")
        return ScanResponse(success=False, error=f"Kan afbeelding niet lezen: {e}")

    return ScanResponse.from_result(result)


@router.post(
    "/scan/batch",
    response_model=BatchScanResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Too many images"},
        503: {"model": ErrorResponse, "description": "OCR engine unavailable"}
    },
    tags=["Scan"]
)
async def scan_batch(
    images: List[UploadFile] = File(..., description="Bottle label photos"),
):
    """Scan several photos; each one is read independently."""
    start_time = time.time()
    settings = get_settings()

    if len(images) > settings.max_batch_size:
        raise HTTPException(
            status_code=400,
            detail=f"Batch size {len(images)} exceeds maximum of {settings.max_batch_size}"
        )

    items: List[Optional[BatchScanItem]] = [None] * len(images)
    pending = []  # (index, filename, bytes)
    for i, upload in enumerate(images):
        filename = upload.filename or f"image_{i}"
        image_bytes = await upload.read()
        is_valid, error_msg = preprocessor.validate_image(image_bytes, filename)
        if is_valid:
            pending.append((i, filename, image_bytes))
        else:
            items[i] = BatchScanItem(filename=filename, success=False, error=error_msg)

    if pending:
        await _ensure_engine_ready()
        outcomes = await scanner.scan_many([b for _, _, b in pending])
        for (i, filename, _), outcome in zip(pending, outcomes):
            if isinstance(outcome, ScanResult):
                response = ScanResponse.from_result(outcome)
                items[i] = BatchScanItem(filename=filename, success=response.success, result=response)
            elif isinstance(outcome, DecodeError):
                items[i] = BatchScanItem(filename=filename, success=False, error=f"Kan afbeelding niet lezen: {outcome}")
            else:
                logger.error(f"Scan of {filename} failed: {outcome}")
                items[i] = BatchScanItem(filename=filename, success=False, error="Scannen mislukt")

    recognized = sum(1 for item in items if item.success)
    return BatchScanResponse(
        success=True,
        total=len(items),
        recognized=recognized,
        failed=len(items) - recognized,
        results=items,
        processing_time_ms=int((time.time() - start_time) * 1000),
    )


@router.post(
    "/scan/vision",
    response_model=ScanResponse,
    responses={
        503: {"model": ErrorResponse, "description": "Vision assist disabled"}
    },
    tags=["Scan"]
)
async def scan_with_vision(
    image: UploadFile = File(..., description="Bottle photo"),
):
    """Identify a bottle with the vision model instead of on-device OCR."""
    if not vision_client.enabled:
        raise HTTPException(status_code=503, detail="Vision assist is not enabled")

    start_time = time.time()
    settings = get_settings()
    image_bytes = await image.read()

    is_valid, error_msg = preprocessor.validate_image(image_bytes, image.filename or "unknown")
    if not is_valid:
        return ScanResponse(success=False, error=error_msg)

    try:
        reply = await asyncio.wait_for(
            asyncio.to_thread(vision_client.identify, image_bytes, image.content_type or "image/jpeg"),
            timeout=settings.vision_timeout_s,
        )
        result = parse_vision_reply(reply)
    except asyncio.TimeoutError:
        logger.warning(f"Vision assist timed out after {settings.vision_timeout_s:.1f}s")
        result = ScanResult.failed(FailureReason.TIMEOUT, attempts=1)
    except VisionAssistError as e:
        logger.warning(f"Vision assist failed: {e}")
        result = ScanResult.failed(FailureReason.ENGINE_ERROR, attempts=1)

    result.processing_time_ms = (time.time() - start_time) * 1000
    return ScanResponse.from_result(result)


@router.get(
    "/barcode/{barcode}",
    response_model=ScanResponse,
    responses={
        502: {"model": ErrorResponse, "description": "OpenFoodFacts unreachable"}
    },
    tags=["Scan"]
)
async def lookup_barcode(barcode: str):
    """Look up a scanned EAN/UPC barcode in OpenFoodFacts."""
    start_time = time.time()
    try:
        result = await barcode_lookup.lookup(barcode)
    except ValueError as e:
        return ScanResponse(success=False, error=str(e))
    except BarcodeLookupError as e:
        raise HTTPException(status_code=502, detail=f"Barcode lookup failed: {e}")

    result.processing_time_ms = (time.time() - start_time) * 1000
    return ScanResponse.from_result(result)
