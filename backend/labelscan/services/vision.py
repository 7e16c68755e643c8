"""Vision assist: an LLM reads the bottle and replies with JSON.

The reply is untrusted free text. It is validated and mapped straight onto a
ScannedRecord; the OCR line heuristics never run on it.
"""

import base64
import json
import logging
import re
from typing import Optional, Any, Tuple

from openai import OpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .records import (
    ConfidenceTier,
    DEFAULT_CATEGORY,
    FailureReason,
    RecordSource,
    ScannedRecord,
    ScanResult,
    UNKNOWN_PRODUCT,
)
from .extraction import extract_abv, extract_vintage
from ..config import get_settings

logger = logging.getLogger(__name__)


VISION_PROMPT = (
    "Identify this alcohol bottle. Return JSON only, no markdown: "
    "{brand, productName, type (Wijn/Whisky/Gin/etc), vintage, abv, volume, "
    "description (Dutch), tastingNotes (Dutch array), foodPairing (Dutch array), "
    "producer: {name, region, about (Dutch)}}. "
    "If unsure, give your best guess based on the visual cues."
)


class VisionAssistError(Exception):
    """The vision API could not be reached or returned nothing."""


class VisionReply(BaseModel):
    """Fields we take from the model's JSON; everything else is ignored."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    brand: Optional[str] = None
    product_name: Optional[str] = Field(None, alias="productName")
    category: Optional[str] = Field(None, alias="type")
    vintage: Optional[str] = None
    abv: Optional[str] = None
    volume: Optional[str] = None

    @field_validator("brand", "product_name", "category", "vintage", "abv", "volume", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        """Models send numbers, nulls and "N/A" where strings are expected."""
        if value is None or isinstance(value, (dict, list)):
            return None
        text = str(value).strip()
        if not text or text.lower() in {"n/a", "na", "null", "none", "unknown", "onbekend", "-"}:
            return None
        return text


def _strip_fences(text: str) -> str:
    return re.sub(r"```(?:json)?", "", text, flags=re.IGNORECASE).strip()


def _decode_json_object(text: str) -> Optional[Tuple[Any, str]]:
    """
    Decode the first JSON value starting at a ``{`` in the reply.

    Returns:
        Tuple of (payload, source text), or None if the reply has no ``{``

    Raises:
        json.JSONDecodeError: If the object is malformed
    """
    start = text.find("{")
    if start < 0:
        return None
    payload, end = json.JSONDecoder().raw_decode(text, start)
    return payload, text[start:end]


def _normalize_abv(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    found = extract_abv(value if "%" in value else f"{value}%")
    return found or value


def parse_vision_reply(text: str) -> ScanResult:
    """
    Map a raw vision-model reply onto a ScanResult.

    Tier is ``high`` when both brand and product name came back, ``medium``
    with a brand only; no brand or no parseable JSON is a failure.
    """
    cleaned = _strip_fences(text or "")
    try:
        decoded = _decode_json_object(cleaned)
        if decoded is None:
            logger.warning(f"Vision reply has no JSON object: {cleaned[:100]!r}")
            return ScanResult.failed(FailureReason.INVALID_REPLY)
        payload, block = decoded
        reply = VisionReply.model_validate(payload)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Vision reply rejected: {e}")
        return ScanResult.failed(FailureReason.INVALID_REPLY)

    if not reply.brand:
        logger.info("Vision reply has no brand")
        return ScanResult.failed(FailureReason.INVALID_REPLY)

    tier = ConfidenceTier.HIGH if reply.product_name else ConfidenceTier.MEDIUM
    vintage = extract_vintage(reply.vintage) if reply.vintage else None

    record = ScannedRecord(
        raw_text=block,
        brand=reply.brand,
        product_name=reply.product_name or UNKNOWN_PRODUCT,
        category=reply.category or DEFAULT_CATEGORY,
        abv=_normalize_abv(reply.abv),
        volume=reply.volume,
        vintage=vintage or reply.vintage,
        confidence_tier=tier,
        source=RecordSource.VISION,
    )
    return ScanResult.success(record, attempts=1)


class VisionAssistClient:
    """Sends a bottle photo to the OpenAI vision model."""

    def __init__(self, settings=None, client: Optional[OpenAI] = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def enabled(self) -> bool:
        return self.settings.vision_assist_enabled and (
            self._client is not None or bool(self.settings.openai_api_key)
        )

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.settings.openai_api_key:
                raise VisionAssistError("OPENAI_API_KEY is not configured")
            self._client = OpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.vision_timeout_s,
            )
            logger.info("OpenAI client initialized")
        return self._client

    def identify(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
        """
        Ask the model to identify the bottle.

        Returns:
            The raw reply text (expected to contain a JSON object)

        Raises:
            VisionAssistError: On API errors or an empty reply
        """
        data_url = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"
        client = self._get_client()
        logger.info(f"Calling vision model {self.settings.openai_model} ({len(image_bytes) / 1024:.0f}KB image)")

        try:
            response = client.chat.completions.create(
                model=self.settings.openai_model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": VISION_PROMPT},
                            {"type": "image_url", "image_url": {"url": data_url, "detail": "low"}},
                        ],
                    }
                ],
                max_tokens=self.settings.vision_max_tokens,
            )
        except Exception as e:
            logger.error(f"Vision API call failed: {e}")
            raise VisionAssistError(str(e)) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise VisionAssistError("Empty reply from vision model")
        return content
