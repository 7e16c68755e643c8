"""Tests for image preprocessing service."""

import io

import numpy as np
import pytest
from PIL import Image

from labelscan.config import Settings
from labelscan.services.preprocessing import DecodeError, ImagePreprocessor, PreprocessVariant

from conftest import image_bytes


@pytest.fixture
def preprocessor(settings):
    """Create preprocessor instance."""
    return ImagePreprocessor(settings)


def solid(bgr, size=(20, 20)):
    """Solid-color BGR array."""
    image = np.zeros((size[1], size[0], 3), dtype=np.uint8)
    image[:, :] = bgr
    return image


class TestLoadImage:
    """Test decoding of uploaded bytes."""

    def test_load_png(self, preprocessor, label_bytes):
        """Test PNG bytes decode to a BGR array."""
        image = preprocessor.load_image(label_bytes)
        assert image.shape == (200, 300, 3)
        assert image.dtype == np.uint8

    def test_load_jpeg(self, preprocessor):
        """Test JPEG bytes decode."""
        image = preprocessor.load_image(image_bytes(fmt="JPEG"))
        assert image.shape == (200, 300, 3)

    def test_alpha_channel_dropped(self, preprocessor):
        """Test RGBA uploads come back as three channels."""
        img = Image.new("RGBA", (120, 80), color=(255, 0, 0, 128))
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")

        image = preprocessor.load_image(buffer.getvalue())

        assert image.shape == (80, 120, 3)

    def test_exif_orientation_applied(self, preprocessor):
        """Test portrait phone photos are rotated upright."""
        img = Image.new("RGB", (300, 200), color="white")
        exif = img.getexif()
        exif[0x0112] = 6  # Rotated 90 CW
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", exif=exif.tobytes())

        image = preprocessor.load_image(buffer.getvalue())

        assert image.shape[:2] == (300, 200)

    def test_empty_bytes(self, preprocessor):
        """Test zero-byte input raises DecodeError."""
        with pytest.raises(DecodeError):
            preprocessor.load_image(b"")

    def test_corrupt_bytes(self, preprocessor):
        """Test non-image bytes raise DecodeError."""
        with pytest.raises(DecodeError):
            preprocessor.load_image(b"\x89PNG not really")


class TestResize:
    """Test downscaling."""

    def test_large_image_downscaled(self, preprocessor):
        """Test the longer side is scaled to max_dimension."""
        image = np.zeros((1000, 2000, 3), dtype=np.uint8)
        resized = preprocessor.resize(image, 1600)
        assert resized.shape[:2] == (800, 1600)

    def test_portrait_uses_height(self, preprocessor):
        """Test portrait images scale by height."""
        image = np.zeros((3000, 1500, 3), dtype=np.uint8)
        resized = preprocessor.resize(image, 1200)
        assert resized.shape[:2] == (1200, 600)

    def test_small_image_unchanged(self, preprocessor):
        """Test images that fit are passed through."""
        image = np.zeros((100, 200, 3), dtype=np.uint8)
        assert preprocessor.resize(image, 1600) is image


class TestVariants:
    """Test grayscale-contrast and binary variants."""

    def test_grayscale_single_channel(self, preprocessor):
        """Test grayscale output is 2-D uint8."""
        gray = preprocessor.to_grayscale_contrast(solid((100, 100, 100)), 1.5)
        assert gray.ndim == 2
        assert gray.dtype == np.uint8

    def test_contrast_stretch_around_mid_grey(self, preprocessor):
        """Test the linear stretch and clipping."""
        assert preprocessor.to_grayscale_contrast(solid((100, 100, 100)), 1.5)[0, 0] == 86
        assert preprocessor.to_grayscale_contrast(solid((128, 128, 128)), 1.5)[0, 0] == 128
        assert preprocessor.to_grayscale_contrast(solid((255, 255, 255)), 1.5)[0, 0] == 255
        assert preprocessor.to_grayscale_contrast(solid((0, 0, 0)), 1.5)[0, 0] == 0

    def test_luminance_weights(self, preprocessor):
        """Test red weighs more than blue in the luminance."""
        red = preprocessor.to_grayscale_contrast(solid((0, 0, 255)), 1.0)[0, 0]
        blue = preprocessor.to_grayscale_contrast(solid((255, 0, 0)), 1.0)[0, 0]
        assert red == 76
        assert blue == 29

    def test_binary_two_levels(self, preprocessor):
        """Test the binary variant is pure black and white."""
        image = np.zeros((20, 20, 3), dtype=np.uint8)
        image[:, 10:] = 255
        binary = preprocessor.to_adaptive_binary(image, 0.9)

        assert set(np.unique(binary)) == {0, 255}
        assert binary[0, 0] == 0
        assert binary[0, 19] == 255

    def test_binary_threshold_follows_mean(self, preprocessor):
        """Test a mid-grey pixel flips with the threshold ratio."""
        image = np.full((10, 10), 100, dtype=np.uint8)
        image[0, 0] = 90
        # mean is 99.9; 90 is above 0.8 * mean but below 0.95 * mean
        assert preprocessor.to_adaptive_binary(image, 0.8)[0, 0] == 255
        assert preprocessor.to_adaptive_binary(image, 0.95)[0, 0] == 0

    def test_build_variant(self, preprocessor, label_bytes):
        """Test both variants are built from the same decoded image."""
        image = preprocessor.load_image(label_bytes)
        gray = preprocessor.build_variant(image, PreprocessVariant.GRAYSCALE)
        binary = preprocessor.build_variant(image, PreprocessVariant.BINARY)
        assert gray.shape == binary.shape == (200, 300)
        assert np.isin(binary, [0, 255]).all()


class TestQuality:
    """Test image quality assessment."""

    def test_flat_image_flagged(self, preprocessor):
        """Test a featureless image is blurry and low contrast."""
        quality = preprocessor.assess_quality(solid((128, 128, 128), (200, 200)))
        assert quality.is_blurry
        assert quality.is_low_contrast
        assert quality.recommendation is not None

    def test_sharp_image_passes(self, preprocessor, label_bytes):
        """Test a high-contrast pattern is not flagged."""
        quality = preprocessor.assess_quality(preprocessor.load_image(label_bytes))
        assert not quality.is_blurry
        assert not quality.is_low_contrast
        assert quality.recommendation is None


class TestImageValidation:
    """Test upload validation."""

    def test_validate_valid_image(self, preprocessor, label_bytes):
        """Test validation passes for valid image."""
        is_valid, error = preprocessor.validate_image(label_bytes, "label.png")
        assert is_valid is True
        assert error == ""

    def test_validate_invalid_extension(self, preprocessor, label_bytes):
        """Test validation fails for unsupported extension."""
        is_valid, error = preprocessor.validate_image(label_bytes, "label.gif")
        assert is_valid is False
        assert error == "Ongeldig bestandstype. Toegestane formaten: JPEG, JPG, PNG, WEBP"

    def test_validate_image_too_small(self, preprocessor):
        """Test validation fails for too small image."""
        is_valid, error = preprocessor.validate_image(image_bytes(50, 50), "small.png")
        assert is_valid is False
        assert error == "Afbeelding te klein. Minimale afmetingen: 100x100 pixels."

    def test_validate_too_large(self, label_bytes):
        """Test the upload size limit."""
        preprocessor = ImagePreprocessor(Settings(_env_file=None, max_upload_size_mb=0))
        is_valid, error = preprocessor.validate_image(label_bytes, "label.png")
        assert is_valid is False
        assert "uploadlimiet" in error

    def test_invalid_image_data(self, preprocessor):
        """Test handling of invalid image data."""
        is_valid, error = preprocessor.validate_image(b"not an image", "test.png")
        assert is_valid is False
        assert error.startswith("Kan afbeelding niet lezen")

    def test_get_image_info(self, preprocessor, label_bytes):
        """Test image info extraction."""
        info = preprocessor.get_image_info(label_bytes)
        assert info["format"] == "PNG"
        assert info["width"] == 300
        assert info["height"] == 200
        assert info["size_bytes"] > 0
