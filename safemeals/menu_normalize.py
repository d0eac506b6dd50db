# safemeals/menu_normalize.py
"""
Menu name normalization + near-duplicate merge: second pipeline stage.

Each cleansed fragment is rewritten (spacing, typos, abbreviations), then the
list is collapsed greedily: a fragment whose name is equal (case-insensitive)
or at least 80% similar by Levenshtein distance to an already accepted entry
is merged into it, and the higher-confidence record survives.

The merge is O(n^2) over fragments; a scanned menu holds tens of items.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence

from .ocr_types import CleansedFragment, NormalizedItem

log = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 80.0  # percent

ABBREVIATION_MAP: Dict[str, str] = {
    "삼겹": "삼겹살",
    "김찌": "김치찌개",
    "된짱": "된장찌개",
    "부찌": "부대찌개",
    "순찌": "순두부찌개",
    "삼계": "삼계탕",
}

TYPO_MAP: Dict[str, str] = {
    "찌게": "찌개",
    "찌깨": "찌개",
    "찌계": "찌개",
    "짜게": "찌개",
}

_ABBREVIATION_PREFIX_RES = [
    (re.compile(r"(?:^|(?<=\s))" + re.escape(abbr) + r"(?![\uac00-\ud7a3])"), full)
    for abbr, full in ABBREVIATION_MAP.items()
]

# Only whitespace with a digit on both sides survives ("10 000").
_SPACE_NONDIGIT_RE = re.compile(r"(?<=\D)\s+(?=\D)")
_SPACE_DIGIT_NONDIGIT_RE = re.compile(r"(?<=\d)\s+(?=\D)")
_SPACE_NONDIGIT_DIGIT_RE = re.compile(r"(?<=\D)\s+(?=\d)")

# ---------------------------------------------------------------------------
# Per-item rewrites
# ---------------------------------------------------------------------------

def standardize_spacing(text: str) -> str:
    text = _SPACE_NONDIGIT_RE.sub("", text)
    text = _SPACE_DIGIT_NONDIGIT_RE.sub("", text)
    return _SPACE_NONDIGIT_DIGIT_RE.sub("", text).strip()


def fix_typos(text: str) -> str:
    for typo, correct in TYPO_MAP.items():
        text = text.replace(typo, correct)
    return text


def expand_abbreviations(text: str) -> str:
    """
    Expand one abbreviation: a whole-token match wins; otherwise the first
    abbreviation found at the start of a word and not followed by another
    Hangul syllable ("삼겹1인분" -> "삼겹살1인분", "삼겹살" untouched).
    """
    tokens = text.split()
    for abbr, full in ABBREVIATION_MAP.items():
        if abbr in tokens:
            return " ".join(full if tok == abbr else tok for tok in tokens)
    for rx, full in _ABBREVIATION_PREFIX_RES:
        if rx.search(text):
            return rx.sub(full, text, count=1)
    return text


def normalize_name(text: str) -> str:
    text = standardize_spacing(text)
    text = fix_typos(text)
    return expand_abbreviations(text)


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------

def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost))
        prev = cur
    return prev[-1]


def calculate_similarity(a: str, b: str) -> float:
    """Return similarity in percent (0-100)."""
    if a == b:
        return 100.0
    if not a or not b:
        return 0.0
    max_len = max(len(a), len(b))
    return (max_len - levenshtein_distance(a, b)) / max_len * 100.0


def is_duplicate(a: NormalizedItem, b: NormalizedItem) -> bool:
    if a.normalized.lower() == b.normalized.lower():
        return True
    return calculate_similarity(a.normalized, b.normalized) >= SIMILARITY_THRESHOLD


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def _stronger(current: NormalizedItem, existing: NormalizedItem) -> NormalizedItem:
    # ties keep the entry that was accepted first
    return current if current.confidence > existing.confidence else existing


def _absorb_neighbours(unique: List[NormalizedItem], idx: int) -> None:
    """
    After unique[idx] was replaced, fold in any other accepted entry that is
    now a duplicate of it, so no pair in `unique` satisfies the merge predicate.
    """
    changed = True
    while changed:
        changed = False
        for j in range(len(unique)):
            if j == idx or not is_duplicate(unique[idx], unique[j]):
                continue
            keeper = _stronger(unique[j], unique[idx]) if j > idx else _stronger(unique[idx], unique[j])
            unique[min(idx, j)] = keeper
            del unique[max(idx, j)]
            idx = min(idx, j)
            changed = True
            break


def deduplicate_and_merge(items: Sequence[NormalizedItem]) -> List[NormalizedItem]:
    unique: List[NormalizedItem] = []
    for current in items:
        for idx, existing in enumerate(unique):
            if not is_duplicate(current, existing):
                continue
            keeper = _stronger(current, existing)
            if keeper is current:
                unique[idx] = current
                _absorb_neighbours(unique, idx)
            break
        else:
            unique.append(current)
    if len(unique) < len(items):
        log.info("Merged %d OCR fragments into %d menu items", len(items), len(unique))
    return unique


def normalize_menu_names(cleansed: Optional[Sequence[CleansedFragment]]) -> List[NormalizedItem]:
    """Normalize each cleansed fragment, then merge near-duplicates. None or [] yields []."""
    if not cleansed:
        return []
    normalized = [
        NormalizedItem(
            original=frag.original,
            normalized=normalize_name(frag.cleansed),
            confidence=frag.confidence,
            bbox=frag.bbox,
        )
        for frag in cleansed
    ]
    return deduplicate_and_merge(normalized)
