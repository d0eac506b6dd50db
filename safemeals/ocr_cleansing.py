# safemeals/ocr_cleansing.py
"""
OCR text cleansing: first pipeline stage.

Strips symbol noise, repairs glyphs Tesseract commonly misreads on Korean
menus, and rewrites price notation. Confidence and bbox are copied from the
input fragment untouched.

Usage:
    from safemeals.ocr_cleansing import cleanse_ocr_text

    cleansed = cleanse_ocr_text(fragments)
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence

from .ocr_types import CleansedFragment, OcrFragment
from .parsers.price_parser import normalize_price

# ---------------------------------------------------------------------------
# Noise
# ---------------------------------------------------------------------------
_NOISE_RE = re.compile(r"[#$%&*@!~^+=<>]")
_WHITESPACE_RE = re.compile(r"\s+")

# ---------------------------------------------------------------------------
# Korean OCR misreadings
# ---------------------------------------------------------------------------
# A lone leading consonant is usually the first syllable of a dish name that
# lost its vowel (ㄱ치찌개 -> 김치찌개). Multi-character keys are typos and are
# also replaced anywhere inside a word.
KOREAN_FIX_MAP: Dict[str, str] = {
    "ㄱ": "김",
    "ㄴ": "나",
    "ㄷ": "된",
    "ㄹ": "라",
    "ㅁ": "면",
    "ㅂ": "밥",
    "ㅅ": "수",
    "ㅇ": "오",
    "ㅈ": "전",
    "ㅊ": "참",
    "ㅋ": "큰",
    "ㅌ": "탕",
    "ㅍ": "피",
    "ㅎ": "해",
    "찌게": "찌개",
    "찌깨": "찌개",
    "찌계": "찌개",
    "굽밥": "국밥",
}

_WORD_START_FIXES = [
    (err, re.compile(r"(^|\s)" + re.escape(err)), correct)
    for err, correct in KOREAN_FIX_MAP.items()
]


def remove_noise(text: str) -> str:
    cleaned = _NOISE_RE.sub("", text)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned)
    return cleaned.strip()


def fix_korean_errors(text: str) -> str:
    fixed = text
    for err, rx, correct in _WORD_START_FIXES:
        fixed = rx.sub(lambda m, c=correct: m.group(1) + c, fixed)
        if len(err) > 1:
            fixed = fixed.replace(err, correct)
    return fixed


def cleanse_text(text: str) -> str:
    cleansed = remove_noise(text or "")
    cleansed = fix_korean_errors(cleansed)
    return normalize_price(cleansed)


def cleanse_ocr_text(fragments: Optional[Sequence[OcrFragment]]) -> List[CleansedFragment]:
    """Cleanse every fragment in order. None or [] yields []."""
    if not fragments:
        return []
    return [
        CleansedFragment(
            original=frag.text,
            cleansed=cleanse_text(frag.text),
            confidence=frag.confidence,
            bbox=frag.bbox,
        )
        for frag in fragments
    ]
