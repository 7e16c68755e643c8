"""Services for preprocessing, OCR, field resolution and scanning."""

from .preprocessing import ImagePreprocessor, PreprocessVariant, DecodeError
from .ocr import OcrEngine, EasyOCREngine, OcrPassResult, RecognizedLine, EngineUnavailable, acquire_engine
from .extraction import FieldResolver, ResolvedFields, extract_abv, extract_volume, extract_vintage
from .records import ConfidenceTier, FailureReason, RecordSource, ScannedRecord, ScanResult
from .scanner import LabelScanner
from .vision import VisionAssistClient, VisionAssistError, parse_vision_reply
from .barcode import BarcodeLookup, BarcodeLookupError, record_from_openfoodfacts

__all__ = [
    "ImagePreprocessor",
    "PreprocessVariant",
    "DecodeError",
    "OcrEngine",
    "EasyOCREngine",
    "OcrPassResult",
    "RecognizedLine",
    "EngineUnavailable",
    "acquire_engine",
    "FieldResolver",
    "ResolvedFields",
    "extract_abv",
    "extract_volume",
    "extract_vintage",
    "ConfidenceTier",
    "FailureReason",
    "RecordSource",
    "ScannedRecord",
    "ScanResult",
    "LabelScanner",
    "VisionAssistClient",
    "VisionAssistError",
    "parse_vision_reply",
    "BarcodeLookup",
    "BarcodeLookupError",
    "record_from_openfoodfacts",
]
