"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App settings
    app_name: str = "Label Scan API"
    debug: bool = False

    # CORS - the mobile web app is served from a different origin
    cors_origins: list[str] = ["*"]

    # Upload limits
    max_upload_size_mb: int = 15  # Phone photos can be large
    min_upload_dimension: int = 100
    allowed_extensions: set = {"png", "jpg", "jpeg", "webp"}

    # Preprocessing
    max_image_dimension: int = 1600  # Longer side after resize
    contrast_factor: float = 1.5  # Linear stretch around mid-grey
    binary_threshold_ratio: float = 0.9  # Fraction of mean luminance

    # Image quality thresholds
    blur_threshold: float = 50.0
    contrast_threshold: float = 20.0

    # OCR settings
    ocr_languages: list[str] = ["en", "nl", "fr", "de", "it", "es"]
    ocr_max_concurrent: int = 1  # CPU-bound, no benefit from concurrency
    engine_ready_timeout_s: float = 5.0

    # Retry policy
    retry_binary: bool = True
    retry_confidence_threshold: float = 60.0  # Below this, try binary variant
    retry_min_text_length: int = 10  # Fewer characters, try binary variant
    high_confidence_threshold: float = 70.0  # Above this, tier is "high"
    scan_timeout_s: float = 20.0  # Wall-clock budget for both attempts

    # Vision Assist (optional cloud path)
    vision_assist_enabled: bool = False
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    vision_max_tokens: int = 300
    vision_timeout_s: float = 25.0

    # Barcode lookup
    openfoodfacts_url: str = "https://world.openfoodfacts.org/api/v2/product"
    barcode_timeout_s: float = 8.0

    # Batch scanning
    max_batch_size: int = 10

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
