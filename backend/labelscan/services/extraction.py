"""Field resolution from OCR lines.

Label conventions this relies on:
1. The brand is usually the largest text on the front label
2. Legal boilerplate and generic wine words are never the brand
3. Estate prefixes (Chateau, Domaine, Tenuta, ...) are strong brand signals,
   even when the rest of the line looks generic
4. ABV, volume and vintage are metadata, read with regexes over the full text
"""

import re
import unicodedata
from typing import Optional, List, Tuple
from dataclasses import dataclass
import logging

from .ocr import OcrPassResult, RecognizedLine
from .records import DEFAULT_CATEGORY, UNKNOWN_PRODUCT

logger = logging.getLogger(__name__)


# Generic/legal label text, matched as accent-folded lowercase substrings
IGNORE_TERMS = (
    # Legal boilerplate
    "product of", "produce of", "produit de", "prodotto", "producto de",
    "contains", "contient", "contiene", "bevat", "sulfite", "sulphite",
    "allergen", "ingredients", "ingredienten", "warning", "waarschuwing",
    "imported by", "importeur", "importer", "distributed by",
    "bottled", "mis en bouteille", "imbottigliato", "embotellado",
    "enjoy responsibly", "geniet", "recycle", "www.", ".com", ".nl",
    # Alcohol statements
    "alcohol", "alc.", "alc ", "vol.",
    # Generic wine-industry words
    "appellation", "controlee", "protegee", "denominazione", "denominacion",
    "grand vin", "vin de france", "wine of", "red wine", "white wine",
    "premium", "reserve", "riserva", "reserva", "selection", "estate",
    "chateau", "domaine", "vineyard", "cellar", "since", "established",
)

# Line-leading tokens that mark a producer name; override the ignore list
BRAND_PREFIXES = (
    "chateau", "domaine", "tenuta", "bodega", "bodegas", "finca", "villa",
    "castello", "clos", "quinta", "weingut", "cantina", "maison", "mas",
    "podere", "fattoria", "schloss",
)

# Beverage keywords mapped to the Dutch category names the app uses.
# Checked in order, so specific spirits come before generic "wine".
CATEGORY_KEYWORDS = (
    (("single malt", "scotch", "whisky", "whiskey", "bourbon", "rye"), "Whisky"),
    (("cognac", "armagnac", "brandy", "calvados"), "Cognac / Brandy"),
    (("gin",), "Gin"),
    (("vodka",), "Wodka"),
    (("rum", "rhum", "ron"), "Rum"),
    (("tequila", "mezcal"), "Tequila / Mezcal"),
    (("liqueur", "likeur", "amaretto", "limoncello"), "Likeur"),
    (("port", "porto", "sherry", "jerez", "madeira", "vermouth"), "Versterkte wijn"),
    (("champagne", "cremant", "prosecco", "cava", "spumante", "sekt", "brut"), "Mousserende wijn"),
    (("rose", "rosato", "rosado"), "Rosé wijn"),
    (("cabernet", "merlot", "pinot noir", "syrah", "shiraz", "malbec", "tempranillo",
      "sangiovese", "nebbiolo", "grenache", "zinfandel", "primitivo", "rioja",
      "bordeaux", "bourgogne", "chianti", "barolo", "rosso", "tinto", "rouge"), "Rode wijn"),
    (("chardonnay", "sauvignon blanc", "riesling", "pinot grigio", "pinot gris",
      "chenin", "viognier", "gruner", "albarino", "verdejo", "chablis",
      "sancerre", "bianco", "blanco", "blanc"), "Witte wijn"),
    (("wine", "wijn", "vin", "vino", "wein"), "Wijn"),
)

ABV_PATTERN = re.compile(r'(?<!\d)(?<!\d[.,])(\d{1,2}(?:[.,]\d)?)\s?%')
VOLUME_PATTERN = re.compile(r'(?<![\d.,])(\d{2,4})\s?(cl|ml|l)\b', re.IGNORECASE)
VINTAGE_PATTERN = re.compile(r'(?<![\d.,])((?:19|20)\d{2})(?![.,]?\d)(?!\s?(?:cl|ml|l)\b)', re.IGNORECASE)

# Whole-line metadata: "13.5%", "13,5 % vol", "750ml", "75 cl"
PURE_ABV_LINE = re.compile(r'\d{1,2}(?:[.,]\d)?\s?%(?:\s*(?:alc\.?\s*/?\s*)?vol\.?)?', re.IGNORECASE)
PURE_VOLUME_LINE = re.compile(r'(?:e\s*)?\d{2,4}\s?(?:cl|ml|l)\.?(?:\s*e)?', re.IGNORECASE)

MIN_ALNUM_CHARS = 3
MAX_SYMBOL_RATIO = 0.30


@dataclass
class ResolvedFields:
    """Brand/name/metadata guesses for one OCR pass."""
    brand: Optional[str]
    product_name: str
    category: str
    abv: Optional[str]
    volume: Optional[str]
    vintage: Optional[str]
    method: str  # "height", "text_only", "reading_order" or "none"

    @property
    def has_brand(self) -> bool:
        return bool(self.brand)


def fold(text: str) -> str:
    """Lowercase and strip accents ("Château" -> "chateau")."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def alnum_count(text: str) -> int:
    return sum(ch.isalnum() for ch in text)


def symbol_ratio(text: str) -> float:
    """Share of non-alphanumeric, non-space characters in the stripped line."""
    stripped = text.strip()
    if not stripped:
        return 1.0
    symbols = sum(1 for ch in stripped if not ch.isalnum() and not ch.isspace())
    return symbols / len(stripped)


def is_noise(text: str) -> bool:
    """Symbol-heavy OCR artifacts (``"| ' | e |"``)."""
    return symbol_ratio(text) > MAX_SYMBOL_RATIO


def is_metadata_line(text: str) -> bool:
    """A line that is only an ABV or volume statement."""
    stripped = text.strip()
    return bool(PURE_ABV_LINE.fullmatch(stripped) or PURE_VOLUME_LINE.fullmatch(stripped))


def is_garbage(text: str) -> bool:
    """Lines that can never name the product."""
    if alnum_count(text) < MIN_ALNUM_CHARS:
        return True
    if is_noise(text):
        return True
    return is_metadata_line(text)


def has_brand_prefix(text: str) -> bool:
    words = re.findall(r"[a-z0-9']+", fold(text))
    return bool(words) and words[0] in BRAND_PREFIXES


def is_ignored(text: str) -> bool:
    """Boilerplate/generic lines, unless they open with an estate prefix."""
    if has_brand_prefix(text):
        return False
    folded = fold(text)
    return any(term in folded for term in IGNORE_TERMS)


def extract_abv(text: str) -> Optional[str]:
    """First ``13.5%``-style match, comma decimals normalized to a dot."""
    match = ABV_PATTERN.search(text)
    if not match:
        return None
    return match.group(1).replace(",", ".") + "%"


def extract_volume(text: str) -> Optional[str]:
    """First ``750ml``/``75 cl``/``15 L`` match as number + lowercase unit."""
    match = VOLUME_PATTERN.search(text)
    if not match:
        return None
    return f"{match.group(1)}{match.group(2).lower()}"


def extract_vintage(text: str) -> Optional[str]:
    """First 19xx/20xx year."""
    match = VINTAGE_PATTERN.search(text)
    return match.group(1) if match else None


def infer_category(text: str) -> str:
    """Dutch category from the first matching beverage keyword."""
    folded = fold(text)
    for keywords, category in CATEGORY_KEYWORDS:
        for kw in keywords:
            if re.search(rf"\b{re.escape(kw)}\b", folded):
                return category
    return DEFAULT_CATEGORY


class FieldResolver:
    """Turns one OCR pass into brand/name/metadata guesses."""

    def resolve(self, ocr_pass: OcrPassResult) -> ResolvedFields:
        raw_text = ocr_pass.full_text
        lines = ocr_pass.lines or self._lines_from_text(raw_text)

        brand, product_name, method = self._resolve_by_height(lines)
        if brand is None:
            brand, product_name, method = self._resolve_by_reading_order(lines)
        elif not ocr_pass.lines:
            method = "text_only"

        fields = ResolvedFields(
            brand=brand,
            product_name=product_name or UNKNOWN_PRODUCT,
            category=infer_category(raw_text),
            abv=extract_abv(raw_text),
            volume=extract_volume(raw_text),
            vintage=extract_vintage(raw_text),
            method=method,
        )
        logger.debug(f"Resolved brand={fields.brand!r} product={fields.product_name!r} via {method}")
        return fields

    def candidate_lines(self, lines: List[RecognizedLine]) -> List[RecognizedLine]:
        """Lines surviving garbage rejection, largest text first."""
        survivors = [line for line in lines if not is_garbage(line.text)]
        # sorted() is stable: equal heights keep engine reading order
        return sorted(survivors, key=lambda line: line.height, reverse=True)

    def _resolve_by_height(
        self, lines: List[RecognizedLine]
    ) -> Tuple[Optional[str], Optional[str], str]:
        candidates = self.candidate_lines(lines)
        if not candidates:
            return None, None, "none"

        named = [line for line in candidates if not is_ignored(line.text)]
        if named:
            brand_line = named[0]
            brand_key = fold(brand_line.text.strip())
            rest = [line for line in named[1:] if fold(line.text.strip()) != brand_key]
        else:
            # Everything is boilerplate; the biggest text is still the best guess
            brand_line = candidates[0]
            rest = []

        product_line = rest[0] if rest else None
        return (
            brand_line.text.strip(),
            product_line.text.strip() if product_line else None,
            "height",
        )

    def _resolve_by_reading_order(
        self, lines: List[RecognizedLine]
    ) -> Tuple[Optional[str], Optional[str], str]:
        """Engine order fallback; symbol noise is still never promoted."""
        usable = [line.text.strip() for line in lines if alnum_count(line.text) and not is_noise(line.text)]
        if not usable:
            return None, None, "none"
        product_name = usable[1] if len(usable) > 1 else None
        return usable[0], product_name, "reading_order"

    def _lines_from_text(self, text: str) -> List[RecognizedLine]:
        """Geometry-less lines for engines that only return text."""
        return [
            RecognizedLine(text=part.strip(), bbox=(0, 0, 0, 0), confidence=0.0)
            for part in text.splitlines()
            if part.strip()
        ]
