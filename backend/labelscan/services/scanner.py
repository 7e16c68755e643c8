"""Label scan pipeline: preprocessing, two-attempt OCR and field resolution.

Retry policy:
1. OCR the grayscale-contrast variant
2. If confidence < 60, text < 10 characters or the engine failed, OCR the
   binary variant (never more than two attempts)
3. Keep the pass with more text, whatever the engine confidence
4. Resolve fields from the winner, or fail if it is unusable

The whole sequence races a wall-clock budget. Blocking work (decode, OCR) runs
in worker threads, so a timed-out OCR call is abandoned rather than awaited.
"""

import asyncio
import time
import logging
from typing import Optional, List, Tuple, Union

from .ocr import OcrEngine, OcrPassResult
from .preprocessing import ImagePreprocessor, PreprocessVariant
from .extraction import FieldResolver
from .records import ConfidenceTier, FailureReason, ScannedRecord, ScanResult, RecordSource
from ..config import get_settings

logger = logging.getLogger(__name__)


class LabelScanner:
    """Reads one bottle photo into a ScanResult."""

    def __init__(
        self,
        engine: OcrEngine,
        preprocessor: Optional[ImagePreprocessor] = None,
        resolver: Optional[FieldResolver] = None,
        settings=None,
    ):
        self.settings = settings or get_settings()
        self.engine = engine
        self.preprocessor = preprocessor or ImagePreprocessor(self.settings)
        self.resolver = resolver or FieldResolver()

    async def scan(
        self,
        image_bytes: bytes,
        retry_binary: Optional[bool] = None,
        max_dimension: Optional[int] = None,
        timeout_s: Optional[float] = None,
    ) -> ScanResult:
        """
        Scan a label photo.

        Args:
            image_bytes: Raw JPEG/PNG/WebP bytes
            retry_binary: Allow the binary-variant retry (default from settings)
            max_dimension: Longer side after resize (default from settings)
            timeout_s: Wall-clock budget (default from settings)

        Returns:
            ScanResult with a record, or a low-yield/timeout/engine failure

        Raises:
            DecodeError: If the image cannot be decoded; no OCR is attempted
        """
        if retry_binary is None:
            retry_binary = self.settings.retry_binary
        if max_dimension is None:
            max_dimension = self.settings.max_image_dimension
        if timeout_s is None:
            timeout_s = self.settings.scan_timeout_s

        start_time = time.time()
        progress = {"attempts": 0, "used_binary": False}
        try:
            result = await asyncio.wait_for(
                self._run(image_bytes, retry_binary, max_dimension, progress),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Scan timed out after {timeout_s:.1f}s ({progress['attempts']} OCR attempts started)")
            result = ScanResult.failed(
                FailureReason.TIMEOUT,
                attempts=progress["attempts"],
                used_binary=progress["used_binary"],
            )

        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Scan finished: ok={result.ok}, tier={result.confidence_tier.value}, "
            f"attempts={result.attempts}, binary={result.used_binary}, "
            f"time={result.processing_time_ms:.0f}ms"
        )
        return result

    async def scan_many(self, images: List[bytes], **kwargs) -> List[Union[ScanResult, Exception]]:
        """
        Scan several photos concurrently, bounded by ``ocr_max_concurrent``.

        Each scan decodes its own copy of its image. Per-image exceptions
        (e.g. DecodeError) are returned in place instead of raised.
        """
        semaphore = asyncio.Semaphore(max(1, self.settings.ocr_max_concurrent))

        async def bounded(image_bytes: bytes) -> ScanResult:
            async with semaphore:
                return await self.scan(image_bytes, **kwargs)

        return await asyncio.gather(*(bounded(b) for b in images), return_exceptions=True)

    async def _run(
        self,
        image_bytes: bytes,
        retry_binary: bool,
        max_dimension: int,
        progress: dict,
    ) -> ScanResult:
        image = await asyncio.to_thread(self._decode, image_bytes, max_dimension)

        # Attempt 1: grayscale-contrast variant
        progress["attempts"] = 1
        first, first_error = await self._attempt(image, PreprocessVariant.GRAYSCALE)

        second = None
        if retry_binary and self._needs_retry(first):
            # Attempt 2: binary variant
            progress["attempts"] = 2
            progress["used_binary"] = True
            second, second_error = await self._attempt(image, PreprocessVariant.BINARY)
            if second_error is not None:
                logger.error(f"Binary OCR attempt failed, giving up: {second_error}")
                return ScanResult.failed(FailureReason.ENGINE_ERROR, attempts=2, used_binary=True)
        elif first_error is not None:
            return ScanResult.failed(FailureReason.ENGINE_ERROR, attempts=1)

        winner = self._pick_winner(first, second)
        attempts = progress["attempts"]
        used_binary = progress["used_binary"]

        if winner is None or winner.is_unusable:
            return await self._low_yield(image, attempts, used_binary)

        fields = self.resolver.resolve(winner)
        if not fields.has_brand:
            logger.info("OCR text found but no line could name the product")
            return await self._low_yield(image, attempts, used_binary)

        record = ScannedRecord(
            raw_text=winner.full_text,
            brand=fields.brand,
            product_name=fields.product_name,
            category=fields.category,
            abv=fields.abv,
            volume=fields.volume,
            vintage=fields.vintage,
            confidence_tier=self._tier(winner, fields.method),
            source=RecordSource.OCR,
        )
        return ScanResult.success(record, attempts=attempts, used_binary=used_binary)

    def _decode(self, image_bytes: bytes, max_dimension: int):
        image = self.preprocessor.load_image(image_bytes)
        return self.preprocessor.resize(image, max_dimension)

    async def _attempt(
        self, image, variant: PreprocessVariant
    ) -> Tuple[Optional[OcrPassResult], Optional[Exception]]:
        """One preprocessing + OCR pass; engine errors are returned, not raised."""
        variant_image = await asyncio.to_thread(self.preprocessor.build_variant, image, variant)
        try:
            ocr_pass = await asyncio.to_thread(self.engine.recognize, variant_image)
        except Exception as e:
            logger.warning(f"OCR on {variant.value} variant failed: {e}")
            return None, e
        finally:
            del variant_image

        ocr_pass.variant = variant.value
        logger.info(
            f"OCR {variant.value}: confidence={ocr_pass.overall_confidence:.1f}, "
            f"lines={len(ocr_pass.lines)}, chars={ocr_pass.trimmed_length}"
        )
        return ocr_pass, None

    def _needs_retry(self, first: Optional[OcrPassResult]) -> bool:
        if first is None:
            return True
        return (
            first.overall_confidence < self.settings.retry_confidence_threshold
            or first.trimmed_length < self.settings.retry_min_text_length
        )

    def _pick_winner(
        self, first: Optional[OcrPassResult], second: Optional[OcrPassResult]
    ) -> Optional[OcrPassResult]:
        """Longer trimmed text wins; the retry must be strictly longer to replace attempt 1."""
        if second is None:
            return first
        if first is None:
            return second
        if second.trimmed_length > 0 and second.trimmed_length > first.trimmed_length:
            return second
        return first

    def _tier(self, winner: OcrPassResult, method: str) -> ConfidenceTier:
        if method in ("reading_order", "text_only"):
            return ConfidenceTier.MEDIUM
        if winner.overall_confidence > self.settings.high_confidence_threshold:
            return ConfidenceTier.HIGH
        return ConfidenceTier.MEDIUM

    async def _low_yield(self, image, attempts: int, used_binary: bool) -> ScanResult:
        quality = await asyncio.to_thread(self.preprocessor.assess_quality, image)
        return ScanResult.failed(
            FailureReason.LOW_YIELD,
            detail=quality.recommendation,
            attempts=attempts,
            used_binary=used_binary,
        )
