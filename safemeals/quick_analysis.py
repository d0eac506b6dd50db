# safemeals/quick_analysis.py
"""
Quick (interim) analysis: keyword rules over the raw menu text.

Runs in milliseconds, before any model call, so a polling client has
something to show while the classifier works. The result is advisory: the
final verdict comes from the classifier, and `merge_overall_status` only ever
raises the final status on the strength of a quick-pass hit, never lowers it.

Staff questions are written in Korean: they are shown to restaurant staff.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .ocr_types import ClassifiedItem, OcrFragment, SafetyStatus

ALLERGY_CODE_TO_LABEL: Dict[str, str] = {
    "eggs": "계란",
    "milk": "우유/유제품",
    "peanuts": "땅콩",
    "tree_nuts": "견과류",
    "fish": "생선",
    "shellfish": "갑각류/조개류",
    "wheat": "밀/글루텐",
    "soy": "대두",
    "sesame": "참깨",
    "pork": "돼지고기",
    "beef": "소고기",
    "chicken": "닭고기",
    "lamb": "양고기",
    "buckwheat": "메밀",
    "peach": "복숭아",
    "tomato": "토마토",
    "sulfites": "아황산염",
    "mustard": "겨자",
    "celery": "셀러리",
    "lupin": "루핀",
    "mollusks": "연체류",
    "alcohol": "알코올",
}

DIET_CODE_TO_LABEL: Dict[str, str] = {
    "vegetarian": "채식주의",
    "vegan": "비건",
    "lacto_vegetarian": "락토 채식",
    "ovo_vegetarian": "오보 채식",
    "pesco_vegetarian": "페스코 채식",
    "flexitarian": "플렉시테리언",
    "halal": "할랄",
    "kosher": "코셔",
    "buddhist_vegetarian": "불교 채식",
    "gluten_free": "글루텐 프리",
    "pork_free": "돼지고기 제외",
    "alcohol_free": "무알코올",
    "garlic_onion_free": "마늘/양파 제외",
}

DANGER_KEYWORDS: Dict[str, List[str]] = {
    "eggs": ["계란", "달걀", "egg", "에그", "마요네즈"],
    "milk": ["우유", "치즈", "버터", "milk", "cheese", "cream", "크림", "유제품"],
    "peanuts": ["땅콩", "peanut", "피넛"],
    "tree_nuts": ["호두", "아몬드", "캐슈넛", "피스타치오", "견과류", "nut", "walnut", "almond"],
    "fish": ["생선", "연어", "참치", "고등어", "fish", "salmon", "tuna"],
    "shellfish": ["새우", "랍스터", "가재", "갑각류", "shrimp", "crab", "lobster"],
    "wheat": ["밀", "글루텐", "빵", "면", "wheat", "gluten", "flour"],
    "soy": ["대두", "두부", "된장", "간장", "soy", "tofu"],
    "sesame": ["참깨", "깨", "sesame"],
    "pork": ["돼지", "삼겹", "베이컨", "햄", "pork", "bacon", "ham"],
    "beef": ["소고기", "불고기", "beef", "스테이크"],
    "chicken": ["닭", "치킨", "chicken"],
    "lamb": ["양고기", "lamb"],
    "buckwheat": ["메밀", "buckwheat", "소바"],
    "peach": ["복숭아", "peach"],
    "alcohol": ["알코올", "술", "맥주", "와인", "alcohol", "beer", "wine"],
}

CAUTION_KEYWORDS: List[str] = [
    "소스", "sauce", "양념", "육수", "브로스", "broth", "stock",
    "튀김", "프라이", "fried", "조미료", "시즈닝", "seasoning",
    "드레싱", "dressing", "마리네이드", "볶음", "찜", "조림",
]

_VEGETARIAN_BASE = ["고기", "육류", "meat", "소고기", "돼지", "닭", "생선", "해산물"]
_EGG = ["계란", "달걀", "egg", "에그"]
_DAIRY = ["우유", "치즈", "버터", "milk", "cheese", "cream", "크림", "유제품"]
_GARLIC_ONION = ["마늘", "양파", "대파", "쪽파", "garlic", "onion"]

DIET_DANGER_KEYWORDS: Dict[str, List[str]] = {
    "vegetarian": _VEGETARIAN_BASE,
    "vegan": ["고기", "육류", "meat", "우유", "계란", "꿀", "honey", "유제품", "dairy"],
    "lacto_vegetarian": _VEGETARIAN_BASE + _EGG,
    "ovo_vegetarian": _VEGETARIAN_BASE + _DAIRY,
    "pesco_vegetarian": ["고기", "육류", "meat", "소고기", "돼지", "닭"],
    "flexitarian": _VEGETARIAN_BASE,
    "halal": ["돼지", "pork", "베이컨", "햄", "알코올", "alcohol", "술", "와인"],
    "kosher": ["돼지", "pork", "갑각류", "shellfish", "새우"],
    "buddhist_vegetarian": _VEGETARIAN_BASE + _GARLIC_ONION,
    "gluten_free": ["밀", "wheat", "글루텐", "gluten", "빵", "면", "파스타"],
    "pork_free": ["돼지", "pork", "베이컨", "햄"],
    "alcohol_free": ["알코올", "술", "맥주", "와인", "소주", "alcohol", "beer", "wine"],
    "garlic_onion_free": _GARLIC_ONION,
}

_ALLERGY_QUESTIONS = {
    "shellfish": "이 요리에 새우, 게, 랍스터 등 갑각류가 들어가나요?",
    "pork": "육수나 조미료에 돼지고기가 들어가나요?",
    "eggs": "이 요리에 계란이 들어가나요?",
    "milk": "이 요리에 우유나 유제품이 들어가나요?",
}

_DIET_QUESTIONS = {
    "halal": "이 요리는 할랄 인증을 받았나요? 돼지고기나 알코올이 없나요?",
    "vegan": "이 요리에 동물성 재료(고기/달걀/우유/꿀)가 전혀 없나요?",
    "vegetarian": "이 요리에 고기나 해산물이 들어가나요?",
    "lacto_vegetarian": "이 요리에 고기, 생선, 계란이 들어가나요?",
    "ovo_vegetarian": "이 요리에 고기, 생선, 유제품이 들어가나요?",
    "pesco_vegetarian": "이 요리에 고기나 닭고기가 들어가나요?",
    "flexitarian": "이 요리에 고기나 해산물이 들어가나요?",
    "kosher": "이 요리는 코셔 규정을 따르나요?",
    "buddhist_vegetarian": "이 요리에 고기나 마늘/양파가 들어가나요?",
    "gluten_free": "이 요리에 밀가루나 글루텐이 들어가나요?",
    "pork_free": "이 요리에 돼지고기나 돼지 육수가 들어가나요?",
    "alcohol_free": "이 요리에 알코올(술, 와인 등)이 들어가나요?",
    "garlic_onion_free": "이 요리에 마늘이나 양파가 들어가나요?",
}

MIN_TEXT_CHARS = 10


@dataclass
class QuickResult:
    level: SafetyStatus
    summary_text: str
    trigger_codes: List[str] = field(default_factory=list)
    trigger_labels: List[str] = field(default_factory=list)
    question_for_staff: str = ""
    confidence: str = "medium"  # "low" | "medium" | "high"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "summaryText": self.summary_text,
            "triggerCodes": list(self.trigger_codes),
            "triggerLabels": list(self.trigger_labels),
            "questionForStaff": self.question_for_staff,
            "confidence": self.confidence,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def ocr_confidence_level(fragments: Optional[Sequence[OcrFragment]]) -> str:
    if not fragments:
        return "low"
    mean = sum(f.confidence for f in fragments) / len(fragments)
    if mean < 0.6:
        return "low"
    if mean < 0.85:
        return "medium"
    return "high"


def _default_staff_question(allergies: Sequence[str], diets: Sequence[str]) -> str:
    if allergies:
        labels = ", ".join(ALLERGY_CODE_TO_LABEL.get(c, c) for c in allergies[:2])
        return f"이 요리에 {labels} 등이 들어가나요?"
    if diets:
        label = DIET_CODE_TO_LABEL.get(diets[0], diets[0])
        return f"이 요리가 {label} 식단에 적합한가요?"
    return "이 요리의 주요 재료를 알려주시겠어요?"


def _staff_question(
    allergy_triggers: Sequence[str],
    diet_triggers: Sequence[str],
    allergies: Sequence[str],
    diets: Sequence[str],
) -> str:
    if allergy_triggers:
        first = allergy_triggers[0]
        label = ALLERGY_CODE_TO_LABEL.get(first, first)
        return _ALLERGY_QUESTIONS.get(first, f"이 요리에 {label}이(가) 들어가나요?")
    if diet_triggers:
        return _DIET_QUESTIONS.get(diet_triggers[0], "이 요리의 재료를 확인해주시겠어요?")
    return _default_staff_question(allergies, diets)


def _mentions_any(text: str, keywords: Sequence[str]) -> bool:
    return any(k.lower() in text for k in keywords)


# ---------------------------------------------------------------------------
# Main entry
# ---------------------------------------------------------------------------

def perform_quick_analysis(
    ocr_text: str,
    user_allergies: Sequence[str],
    user_diets: Sequence[str],
    ocr_confidence: str = "medium",
    ocr_failed: bool = False,
) -> QuickResult:
    allergies = sorted(user_allergies)
    diets = sorted(user_diets)
    text = (ocr_text or "").strip()

    if ocr_failed and not text:
        return QuickResult(
            level=SafetyStatus.CAUTION,
            summary_text="텍스트 인식에 실패했습니다. AI 분석 결과를 기다려주세요.",
            trigger_codes=["_OCR_FAILED"],
            question_for_staff=_default_staff_question(allergies, diets),
            confidence="low",
        )

    if len(text) < MIN_TEXT_CHARS:
        return QuickResult(
            level=SafetyStatus.CAUTION,
            summary_text="메뉴 정보가 충분하지 않습니다. 직원에게 확인하세요.",
            trigger_codes=["_TEXT_TOO_SHORT"],
            question_for_staff=_default_staff_question(allergies, diets),
            confidence=ocr_confidence,
        )

    lower = text.lower()
    allergy_triggers = [c for c in allergies if _mentions_any(lower, DANGER_KEYWORDS.get(c, []))]
    diet_triggers = [d for d in diets if _mentions_any(lower, DIET_DANGER_KEYWORDS.get(d, []))]
    labels = [ALLERGY_CODE_TO_LABEL.get(c, c) for c in allergy_triggers]
    labels += [DIET_CODE_TO_LABEL.get(d, d) for d in diet_triggers]

    if allergy_triggers or diet_triggers:
        level = SafetyStatus.DANGER
        summary = f"{', '.join(labels)} 포함 가능성이 높습니다. 직원에게 확인하세요."
    elif _mentions_any(lower, CAUTION_KEYWORDS):
        level = SafetyStatus.CAUTION
        summary = "숨겨진 재료가 있을 수 있습니다. 직원에게 확인하세요."
    elif ocr_confidence == "low":
        level = SafetyStatus.CAUTION
        summary = "메뉴 정보가 명확하지 않습니다. 직원에게 확인을 권장합니다."
    else:
        level = SafetyStatus.SAFE
        summary = "1차 검사 결과 위험 요소가 감지되지 않았습니다. 최종 분석을 기다려주세요."

    return QuickResult(
        level=level,
        summary_text=summary,
        trigger_codes=allergy_triggers + diet_triggers,
        trigger_labels=labels,
        question_for_staff=_staff_question(allergy_triggers, diet_triggers, allergies, diets),
        confidence=ocr_confidence,
    )


def merge_overall_status(
    quick: Optional[QuickResult],
    items: Sequence[ClassifiedItem],
) -> SafetyStatus:
    """
    Worst item status (CAUTION when nothing was classified), raised by the
    quick pass where it disagrees:
    a quick diet hit turns SAFE into DANGER, any other quick DANGER turns
    SAFE into CAUTION.
    """
    if not items:
        return SafetyStatus.CAUTION
    overall = SafetyStatus.SAFE
    for item in items:
        if item.safety_status.severity > overall.severity:
            overall = item.safety_status

    if quick is None or quick.level is not SafetyStatus.DANGER:
        return overall

    diet_hit = any(code in DIET_DANGER_KEYWORDS for code in quick.trigger_codes)
    if overall is SafetyStatus.SAFE:
        return SafetyStatus.DANGER if diet_hit else SafetyStatus.CAUTION
    return overall
