# safemeals/ocr_types.py
"""
SafeMeals OCR Types: records passed between pipeline stages.

Every stage receives records by value and returns new ones; nothing here is
mutated after construction. Wire format (JSON) follows the scan client:

    {"text": "...", "confidence": 0.93, "bbox": {"x": 10, "y": 20, "w": 100, "h": 30}}

`boundingBox` with `width`/`height` keys is accepted on input as an alias.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple


# ────────────────────────────────────────────────
# 🧩 Base geometric unit: bounding box
# ────────────────────────────────────────────────

@dataclass(frozen=True)
class BBox:
    x: float = 0
    y: float = 0
    w: float = 0
    h: float = 0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "BBox":
        if not data:
            return cls()
        return cls(
            x=data.get("x", 0) or 0,
            y=data.get("y", 0) or 0,
            w=data.get("w", data.get("width", 0)) or 0,
            h=data.get("h", data.get("height", 0)) or 0,
        )


# ────────────────────────────────────────────────
# 🔤 Stage records
# ────────────────────────────────────────────────

@dataclass(frozen=True)
class OcrFragment:
    """One text region reported by the OCR provider."""
    text: str
    confidence: float
    bbox: BBox = field(default_factory=BBox)

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "confidence": self.confidence, "bbox": self.bbox.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OcrFragment":
        bbox = data.get("bbox", data.get("boundingBox"))
        return cls(
            text=str(data.get("text") or ""),
            confidence=float(data.get("confidence") or 0.0),
            bbox=BBox.from_dict(bbox),
        )


@dataclass(frozen=True)
class CleansedFragment:
    original: str
    cleansed: str
    confidence: float
    bbox: BBox = field(default_factory=BBox)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original,
            "cleansed": self.cleansed,
            "confidence": self.confidence,
            "bbox": self.bbox.to_dict(),
        }


@dataclass(frozen=True)
class NormalizedItem:
    original: str
    normalized: str
    confidence: float
    bbox: BBox = field(default_factory=BBox)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original,
            "normalized": self.normalized,
            "confidence": self.confidence,
            "bbox": self.bbox.to_dict(),
        }


@dataclass(frozen=True)
class TranslatedItem:
    id: str
    original: str
    normalized: str
    translated: str
    bbox: BBox = field(default_factory=BBox)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "original": self.original,
            "normalized": self.normalized,
            "translated": self.translated,
            "bbox": self.bbox.to_dict(),
        }


# ────────────────────────────────────────────────
# 🛡️ Safety classification
# ────────────────────────────────────────────────

class SafetyStatus(str, Enum):
    SAFE = "SAFE"
    CAUTION = "CAUTION"
    DANGER = "DANGER"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {SafetyStatus.SAFE: 0, SafetyStatus.CAUTION: 1, SafetyStatus.DANGER: 2}


@dataclass(frozen=True)
class UserSafetyContext:
    """Allergy/diet profile of the person scanning. Read-only input."""
    allergy_tokens: FrozenSet[str] = frozenset()
    diet_tokens: FrozenSet[str] = frozenset()
    language: str = "en"

    @classmethod
    def build(
        cls,
        allergies: Optional[Iterable[str]] = None,
        diets: Optional[Iterable[str]] = None,
        language: Optional[str] = None,
    ) -> "UserSafetyContext":
        def _tokens(values: Optional[Iterable[str]]) -> FrozenSet[str]:
            return frozenset(
                str(v).strip().lower() for v in (values or []) if str(v).strip()
            )

        return cls(
            allergy_tokens=_tokens(allergies),
            diet_tokens=_tokens(diets),
            language=(language or "en").strip() or "en",
        )


@dataclass(frozen=True)
class ClassifiedItem:
    id: str
    original_name: str
    translated_name: str
    safety_status: SafetyStatus
    reason: str = ""
    ingredients: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "originalName": self.original_name,
            "translatedName": self.translated_name,
            "safetyStatus": self.safety_status.value,
            "reason": self.reason,
            "ingredients": list(self.ingredients),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClassifiedItem":
        return cls(
            id=str(data.get("id") or ""),
            original_name=str(data.get("originalName") or ""),
            translated_name=str(data.get("translatedName") or ""),
            safety_status=SafetyStatus(data.get("safetyStatus") or SafetyStatus.DANGER.value),
            reason=str(data.get("reason") or ""),
            ingredients=tuple(data.get("ingredients") or ()),
        )
