# tests/test_quick_analysis.py
"""
Quick (interim) keyword analysis and the final status merge.

Covers:
  OCR failed / text too short -> CAUTION with reserved trigger codes
  allergy keyword hit -> DANGER, labels + staff question
  diet keyword hit -> DANGER
  caution keyword -> CAUTION; low OCR confidence -> CAUTION; else SAFE
  ocr_confidence_level buckets
  merge_overall_status: worst item, escalation only, empty -> CAUTION
"""

from __future__ import annotations

from safemeals.ocr_types import BBox, ClassifiedItem, OcrFragment, SafetyStatus
from safemeals.quick_analysis import (
    QuickResult,
    merge_overall_status,
    ocr_confidence_level,
    perform_quick_analysis,
)


def _classified(status):
    return ClassifiedItem(id="menu-x", original_name="x", translated_name="x", safety_status=status)


class TestPerformQuickAnalysis:
    def test_ocr_failed(self):
        r = perform_quick_analysis("", ["peanuts"], [], ocr_failed=True)
        assert r.level is SafetyStatus.CAUTION
        assert r.trigger_codes == ["_OCR_FAILED"]
        assert r.confidence == "low"
        assert r.question_for_staff

    def test_text_too_short(self):
        r = perform_quick_analysis("김밥", [], [])
        assert r.level is SafetyStatus.CAUTION
        assert r.trigger_codes == ["_TEXT_TOO_SHORT"]

    def test_allergy_hit_is_danger(self):
        r = perform_quick_analysis("새우튀김 12000원 해물파전 15000원", ["shellfish"], [])
        assert r.level is SafetyStatus.DANGER
        assert r.trigger_codes == ["shellfish"]
        assert r.trigger_labels == ["갑각류/조개류"]
        assert "갑각류" in r.question_for_staff

    def test_diet_hit_is_danger(self):
        r = perform_quick_analysis("제주 흑돼지 구이 정식 25000원", [], ["halal"])
        assert r.level is SafetyStatus.DANGER
        assert r.trigger_codes == ["halal"]
        assert "할랄" in r.question_for_staff

    def test_caution_keyword(self):
        r = perform_quick_analysis("특제 양념 비빔밥 9000원", ["peanuts"], [])
        assert r.level is SafetyStatus.CAUTION
        assert r.trigger_codes == []

    def test_low_confidence_is_caution(self):
        r = perform_quick_analysis("비빔밥 9000원 냉면 8000원", ["peanuts"], [], ocr_confidence="low")
        assert r.level is SafetyStatus.CAUTION

    def test_clean_text_safe(self):
        r = perform_quick_analysis("비빔밥 9000원 냉면 8000원", ["peanuts"], [], ocr_confidence="high")
        assert r.level is SafetyStatus.SAFE
        assert r.confidence == "high"

    def test_to_dict_camel_case(self):
        d = perform_quick_analysis("땅콩 강정 5000원 추가", ["peanuts"], []).to_dict()
        assert d["level"] == "DANGER"
        assert set(d) == {
            "level", "summaryText", "triggerCodes", "triggerLabels", "questionForStaff", "confidence",
        }


class TestOcrConfidenceLevel:
    def test_buckets(self):
        def frags(*confs):
            return [OcrFragment("x", c, BBox()) for c in confs]

        assert ocr_confidence_level([]) == "low"
        assert ocr_confidence_level(frags(0.5, 0.6)) == "low"
        assert ocr_confidence_level(frags(0.7, 0.8)) == "medium"
        assert ocr_confidence_level(frags(0.9, 0.95)) == "high"


class TestMergeOverallStatus:
    def test_empty_items_caution(self):
        assert merge_overall_status(None, []) is SafetyStatus.CAUTION

    def test_worst_item_wins(self):
        items = [_classified(SafetyStatus.SAFE), _classified(SafetyStatus.CAUTION)]
        assert merge_overall_status(None, items) is SafetyStatus.CAUTION
        items.append(_classified(SafetyStatus.DANGER))
        assert merge_overall_status(None, items) is SafetyStatus.DANGER

    def test_quick_allergy_danger_raises_safe_to_caution(self):
        quick = QuickResult(level=SafetyStatus.DANGER, summary_text="", trigger_codes=["peanuts"])
        assert merge_overall_status(quick, [_classified(SafetyStatus.SAFE)]) is SafetyStatus.CAUTION

    def test_quick_diet_danger_raises_safe_to_danger(self):
        quick = QuickResult(level=SafetyStatus.DANGER, summary_text="", trigger_codes=["vegan"])
        assert merge_overall_status(quick, [_classified(SafetyStatus.SAFE)]) is SafetyStatus.DANGER

    def test_never_downgrades(self):
        quick = QuickResult(level=SafetyStatus.SAFE, summary_text="")
        assert merge_overall_status(quick, [_classified(SafetyStatus.DANGER)]) is SafetyStatus.DANGER
