"""OCR engine capability and the EasyOCR implementation.

The scanner only depends on ``OcrEngine``: ``recognize(image) -> OcrPassResult``.
``EasyOCREngine`` is the default engine; tests and on-device alternatives plug in
their own. Acquiring a ready engine is an explicit step (``acquire_engine``)
with its own timeout, separate from scanning.
"""

import asyncio
import numpy as np
from abc import ABC, abstractmethod
from typing import Optional, List, Tuple
from dataclasses import dataclass, field
import logging
import os
import time
import threading
import unicodedata
import re

from ..config import get_settings

logger = logging.getLogger(__name__)


class EngineUnavailable(Exception):
    """The OCR engine could not be reached or initialized."""


@dataclass(frozen=True)
class RecognizedLine:
    """One line of text as reported by the OCR engine."""
    text: str
    bbox: Tuple[int, int, int, int]  # (x0, y0, x1, y1) in image pixels
    confidence: float  # 0-100

    @property
    def left(self) -> int:
        return self.bbox[0]

    @property
    def top(self) -> int:
        return self.bbox[1]

    @property
    def right(self) -> int:
        return self.bbox[2]

    @property
    def bottom(self) -> int:
        return self.bbox[3]

    @property
    def height(self) -> int:
        """Rendered text height; larger means more prominent on the label."""
        return self.bottom - self.top

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def center_y(self) -> int:
        return (self.top + self.bottom) // 2


@dataclass
class OcrPassResult:
    """Output of one OCR invocation."""
    full_text: str
    lines: List[RecognizedLine]  # Engine reading order
    overall_confidence: float  # 0-100
    variant: Optional[str] = None

    @property
    def trimmed_length(self) -> int:
        return len(self.full_text.strip())

    @property
    def is_unusable(self) -> bool:
        """Fewer than 2 characters of text and no lines at all."""
        return self.trimmed_length < 2 and not self.lines

    @classmethod
    def empty(cls, variant: Optional[str] = None) -> "OcrPassResult":
        return cls(full_text="", lines=[], overall_confidence=0.0, variant=variant)

    @classmethod
    def from_lines(cls, lines: List[RecognizedLine], variant: Optional[str] = None) -> "OcrPassResult":
        """Build a pass from lines; confidence is the mean line confidence."""
        if not lines:
            return cls.empty(variant)
        confidence = sum(line.confidence for line in lines) / len(lines)
        return cls(
            full_text="\n".join(line.text for line in lines),
            lines=list(lines),
            overall_confidence=confidence,
            variant=variant,
        )


class OcrEngine(ABC):
    """Text recognition capability used by the scanner."""

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        ...

    @abstractmethod
    def initialize(self) -> bool:
        """Load models or connect; returns True once the engine can recognize."""

    @abstractmethod
    def recognize(self, image: np.ndarray) -> OcrPassResult:
        """Run one OCR pass. Raises on engine failure."""


class EasyOCREngine(OcrEngine):
    """EasyOCR wrapper: word boxes merged into lines, confidence on a 0-100 scale."""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()
        self._reader = None
        self._lock = threading.Lock()
        self._semaphore = threading.Semaphore(self.settings.ocr_max_concurrent)

    @property
    def is_ready(self) -> bool:
        return self._reader is not None

    def initialize(self) -> bool:
        """
        Load the EasyOCR reader. Thread-safe; cheap once loaded.

        Returns:
            True if initialization successful
        """
        with self._lock:
            if self._reader is not None:
                return True

            try:
                import easyocr
                import torch

                # Use available CPUs (from env or cpu_count), but cap at reasonable limit
                num_threads = int(os.environ.get('TORCH_NUM_THREADS', min(4, os.cpu_count() or 2)))
                torch.set_num_threads(num_threads)

                logger.info(f"Initializing EasyOCR engine with {num_threads} threads...")

                model_dir = os.environ.get('EASYOCR_MODULE_PATH')
                self._reader = easyocr.Reader(
                    list(self.settings.ocr_languages),
                    gpu=False,
                    model_storage_directory=model_dir,
                    verbose=False
                )
                logger.info("EasyOCR initialized successfully")
                return True

            except Exception as e:
                logger.error(f"Failed to initialize EasyOCR: {e}", exc_info=True)
                return False

    def recognize(self, image: np.ndarray) -> OcrPassResult:
        if not self.is_ready:
            raise EngineUnavailable("OCR engine not initialized")

        with self._semaphore:
            detections = self._reader.readtext(
                image,
                decoder='greedy',
                batch_size=1,
                paragraph=False,
            )

        lines = []
        for bbox_points, text, confidence in detections:
            text = normalize_text(text)
            if not text:
                continue
            xs = [int(p[0]) for p in bbox_points]
            ys = [int(p[1]) for p in bbox_points]
            lines.append(RecognizedLine(
                text=text,
                bbox=(min(xs), min(ys), max(xs), max(ys)),
                confidence=float(confidence) * 100.0,
            ))

        lines = merge_adjacent_lines(lines)
        return OcrPassResult.from_lines(sort_reading_order(lines))


def normalize_text(text: str) -> str:
    """
    Normalize OCR text output.
    - Unicode NFKC normalization
    - Collapse whitespace
    - Strip leading/trailing whitespace
    """
    normalized = unicodedata.normalize('NFKC', text)
    normalized = re.sub(r'\s+', ' ', normalized)
    return normalized.strip()


def sort_reading_order(lines: List[RecognizedLine]) -> List[RecognizedLine]:
    """Top-to-bottom, left-to-right, bucketing rows by median line height."""
    if not lines:
        return []
    line_h = int(np.median([line.height for line in lines]))
    line_h = max(12, min(line_h, 60))  # Clamp to reasonable range
    return sorted(lines, key=lambda line: (line.top // line_h, line.left))


def merge_adjacent_lines(
    lines: List[RecognizedLine],
    y_threshold: int = 15,
    x_gap_threshold: int = 30
) -> List[RecognizedLine]:
    """
    Merge word boxes on the same row into single lines.

    Args:
        lines: Word-level boxes from the engine
        y_threshold: Max Y center difference to consider same row
        x_gap_threshold: Max horizontal gap to merge

    Returns:
        Merged list of RecognizedLine
    """
    if len(lines) <= 1:
        return list(lines)

    sorted_lines = sorted(lines, key=lambda line: (line.center_y, line.left))

    merged = []
    group = [sorted_lines[0]]
    for line in sorted_lines[1:]:
        last = group[-1]
        same_row = abs(line.center_y - last.center_y) <= y_threshold
        if same_row and line.left - last.right <= x_gap_threshold:
            group.append(line)
        else:
            merged.append(_merge_group(group))
            group = [line]
    merged.append(_merge_group(group))

    return merged


def _merge_group(group: List[RecognizedLine]) -> RecognizedLine:
    """Merge a group of boxes into a single line."""
    if len(group) == 1:
        return group[0]
    return RecognizedLine(
        text=" ".join(line.text for line in group),
        bbox=(
            min(line.left for line in group),
            min(line.top for line in group),
            max(line.right for line in group),
            max(line.bottom for line in group),
        ),
        confidence=sum(line.confidence for line in group) / len(group),
    )


async def acquire_engine(
    engine: OcrEngine,
    timeout_s: Optional[float] = None,
    initial_delay_s: float = 0.25,
) -> OcrEngine:
    """
    Wait for an engine to become ready, polling with exponential backoff.

    Raises:
        EngineUnavailable: If the engine is not ready within ``timeout_s``
    """
    if timeout_s is None:
        timeout_s = get_settings().engine_ready_timeout_s

    deadline = time.monotonic() + timeout_s
    delay = initial_delay_s
    attempt = 0
    while True:
        attempt += 1
        if engine.is_ready or await asyncio.to_thread(engine.initialize):
            if attempt > 1:
                logger.info(f"OCR engine ready after {attempt} attempts")
            return engine

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        logger.warning(f"OCR engine not ready (attempt {attempt}), retrying in {min(delay, remaining):.2f}s")
        await asyncio.sleep(min(delay, remaining))
        delay *= 2

    raise EngineUnavailable(f"OCR engine not ready after {timeout_s:.1f}s")
