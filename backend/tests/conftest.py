"""Shared fixtures: a scripted OCR engine and generated label photos."""

import io
import time

import pytest
from PIL import Image

from labelscan.config import Settings
from labelscan.services.ocr import OcrEngine, OcrPassResult, RecognizedLine


def line(text: str, top: int = 0, height: int = 20, left: int = 0, confidence: float = 90.0) -> RecognizedLine:
    """RecognizedLine with a box of the given height."""
    return RecognizedLine(
        text=text,
        bbox=(left, top, left + 10 * max(1, len(text)), top + height),
        confidence=confidence,
    )


def ocr_pass(lines, confidence=None) -> OcrPassResult:
    """OcrPassResult from lines, optionally overriding the confidence."""
    result = OcrPassResult.from_lines(lines)
    if confidence is not None:
        result.overall_confidence = confidence
    return result


class FakeEngine(OcrEngine):
    """
    Engine that replays scripted passes in order.

    Each script item is an OcrPassResult or an Exception to raise.
    """

    def __init__(self, script, ready=True, delay_s=0.0):
        self.script = list(script)
        self.calls = []
        self.ready = ready
        self.delay_s = delay_s
        self.init_calls = 0

    @property
    def is_ready(self) -> bool:
        return self.ready

    def initialize(self) -> bool:
        self.init_calls += 1
        return self.ready

    def recognize(self, image):
        self.calls.append(image)
        if self.delay_s:
            time.sleep(self.delay_s)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def image_bytes(width=300, height=200, fmt="PNG", striped=True) -> bytes:
    """Encode a white image, optionally with a black/white text-like pattern."""
    img = Image.new("RGB", (width, height), color="white")
    if striped:
        pixels = img.load()
        for i in range(width // 6, width - width // 6):
            for j in range(height // 4, height - height // 4):
                if (i + j) % 10 < 5:
                    pixels[i, j] = (0, 0, 0)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def settings():
    """Settings with defaults, independent of any .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def label_bytes():
    """A 300x200 PNG with a text-like pattern."""
    return image_bytes()
