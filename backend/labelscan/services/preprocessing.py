"""Image preprocessing for label OCR.

Produces two contrasting variants of a bottle photo:
- grayscale with a linear contrast stretch (first attempt, normally-lit labels)
- binary at a fraction of the mean luminance (retry, uneven or glossy labels)

The binary variant can read worse than grayscale on clean photos; that is
expected, the scanner keeps whichever pass yields more text.
"""

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError
import io
from enum import Enum
from typing import Tuple, Optional
from dataclasses import dataclass
import logging

from ..config import get_settings

logger = logging.getLogger(__name__)


class DecodeError(Exception):
    """Image bytes could not be rasterized."""


class PreprocessVariant(str, Enum):
    """Preprocessed variants fed to the OCR engine."""
    GRAYSCALE = "grayscale"
    BINARY = "binary"


@dataclass
class ImageQuality:
    """Image quality assessment results."""
    blur_score: float  # Laplacian variance - higher = sharper
    contrast_score: float  # Std deviation - higher = more contrast
    is_blurry: bool
    is_low_contrast: bool
    recommendation: Optional[str] = None


class ImagePreprocessor:
    """Turns raw photos into OCR-ready variants."""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()

    def load_image(self, image_bytes: bytes) -> np.ndarray:
        """
        Decode image bytes into a fresh BGR array.

        Applies EXIF orientation so portrait phone photos are upright.

        Raises:
            DecodeError: If the bytes are empty or not a supported raster image
        """
        if not image_bytes:
            raise DecodeError("Empty image data")

        try:
            pil_image = Image.open(io.BytesIO(image_bytes))
            pil_image = ImageOps.exif_transpose(pil_image)
            # convert() forces the full decode, so truncated files fail here
            if pil_image.mode != "RGB":
                pil_image = pil_image.convert("RGB")
            else:
                pil_image.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise DecodeError(f"Unable to decode image: {e}") from e

        image = np.array(pil_image)
        return cv2.cvtColor(image, cv2.COLOR_RGB2BGR)

    def resize(self, image: np.ndarray, max_dimension: int) -> np.ndarray:
        """
        Scale so the longer side equals ``max_dimension``.

        Images that already fit are returned unchanged; never upscales.
        """
        height, width = image.shape[:2]
        longest = max(width, height)
        if longest <= max_dimension:
            return image

        scale = max_dimension / longest
        new_width = max(1, int(round(width * scale)))
        new_height = max(1, int(round(height * scale)))
        logger.debug(f"Resized image from {width}x{height} to {new_width}x{new_height}")
        return cv2.resize(image, (new_width, new_height), interpolation=cv2.INTER_AREA)

    def to_grayscale_contrast(self, image: np.ndarray, contrast_factor: float) -> np.ndarray:
        """Luminance-weighted grayscale with a linear contrast stretch around 128."""
        gray = self._luminance(image)
        stretched = (gray - 128.0) * contrast_factor + 128.0
        return np.clip(np.rint(stretched), 0, 255).astype(np.uint8)

    def to_adaptive_binary(self, image: np.ndarray, threshold_ratio: Optional[float] = None) -> np.ndarray:
        """Map every pixel to black or white around a fraction of the mean luminance."""
        if threshold_ratio is None:
            threshold_ratio = self.settings.binary_threshold_ratio
        gray = self._luminance(image)
        threshold = gray.mean() * threshold_ratio
        return np.where(gray > threshold, 255, 0).astype(np.uint8)

    def build_variant(self, image: np.ndarray, variant: PreprocessVariant) -> np.ndarray:
        """Build the requested OCR variant from a decoded, resized image."""
        if variant == PreprocessVariant.BINARY:
            return self.to_adaptive_binary(image)
        return self.to_grayscale_contrast(image, self.settings.contrast_factor)

    def assess_quality(self, image: np.ndarray) -> ImageQuality:
        """Assess image quality (blur, contrast) to explain a failed read."""
        if len(image.shape) == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image

        # Blur detection using Laplacian variance
        blur_score = float(cv2.Laplacian(gray, cv2.CV_64F).var())
        contrast_score = float(gray.std())

        is_blurry = blur_score < self.settings.blur_threshold
        is_low_contrast = contrast_score < self.settings.contrast_threshold

        recommendation = None
        if is_blurry and is_low_contrast:
            recommendation = "De foto is onscherp en te donker of te vlak. Houd de camera stil en zorg voor goed licht."
        elif is_blurry:
            recommendation = "De foto is onscherp. Houd de camera stil en stel scherp op het etiket."
        elif is_low_contrast:
            recommendation = "Het etiket heeft weinig contrast. Zorg voor goed licht zonder reflecties."

        return ImageQuality(
            blur_score=blur_score,
            contrast_score=contrast_score,
            is_blurry=is_blurry,
            is_low_contrast=is_low_contrast,
            recommendation=recommendation
        )

    def _luminance(self, image: np.ndarray) -> np.ndarray:
        """0.299R + 0.587G + 0.114B as float32 (input is BGR or already gray)."""
        if len(image.shape) == 2:
            return image.astype(np.float32)
        pixels = image.astype(np.float32)
        return 0.114 * pixels[..., 0] + 0.587 * pixels[..., 1] + 0.299 * pixels[..., 2]

    def get_image_info(self, image_bytes: bytes) -> dict:
        """Get basic image information without full preprocessing."""
        pil_image = Image.open(io.BytesIO(image_bytes))
        return {
            "format": pil_image.format,
            "mode": pil_image.mode,
            "width": pil_image.width,
            "height": pil_image.height,
            "size_bytes": len(image_bytes),
            "size_mb": len(image_bytes) / (1024 * 1024)
        }

    def validate_image(self, image_bytes: bytes, filename: str) -> Tuple[bool, str]:
        """
        Validate an upload before scanning.

        Returns:
            Tuple of (is_valid, error_message)
        """
        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        if ext not in self.settings.allowed_extensions:
            allowed = ", ".join(sorted(self.settings.allowed_extensions)).upper()
            return False, f"Ongeldig bestandstype. Toegestane formaten: {allowed}"

        size_mb = len(image_bytes) / (1024 * 1024)
        if size_mb > self.settings.max_upload_size_mb:
            return False, f"Afbeelding is groter dan de uploadlimiet van {self.settings.max_upload_size_mb}MB. Verklein of comprimeer de foto."

        try:
            info = self.get_image_info(image_bytes)
        except Exception as e:
            return False, f"Kan afbeelding niet lezen: {str(e)}"

        min_dim = self.settings.min_upload_dimension
        if info["width"] < min_dim or info["height"] < min_dim:
            return False, f"Afbeelding te klein. Minimale afmetingen: {min_dim}x{min_dim} pixels."

        return True, ""
