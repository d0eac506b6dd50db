# tests/test_menu_pipeline.py
"""
Stage runner.

Covers:
  default stages -> cleansed / normalized / translated keys only
  single stage requests return only their own key
  duplicate fragments merged before translate/classify
  classify needs a user context; unknown stages rejected
  empty input -> empty lists
"""

from __future__ import annotations

import pytest

from safemeals.menu_pipeline import DEFAULT_STAGES, PIPELINE_STAGES, run_pipeline, validate_stages
from safemeals.ocr_types import BBox, OcrFragment, SafetyStatus, UserSafetyContext


class _AlwaysSafe:
    def __init__(self):
        self.calls = 0

    def generate(self, prompt, constraints):
        self.calls += 1
        return "S"


def _frags():
    return [
        OcrFragment("ㄱ치 찌게", 0.7, BBox(0, 0, 80, 20)),
        OcrFragment("김치찌게", 0.9, BBox(0, 30, 80, 20)),
        OcrFragment("비빔밥", 0.85, BBox(0, 60, 60, 20)),
    ]


class TestValidateStages:
    def test_none_is_default(self):
        assert validate_stages(None) == list(DEFAULT_STAGES)

    def test_unknown_rejected(self):
        with pytest.raises(ValueError):
            validate_stages(["cleanse", "fry"])

    def test_all_known(self):
        assert validate_stages(PIPELINE_STAGES) == list(PIPELINE_STAGES)


class TestRunPipeline:
    def test_default_stages(self):
        out = run_pipeline(_frags())
        assert set(out) == {"cleansed", "normalized", "translated"}
        assert [c.cleansed for c in out["cleansed"]] == ["김치 찌개", "김치찌개", "비빔밥"]
        assert [n.normalized for n in out["normalized"]] == ["김치찌개", "비빔밥"]
        assert [t.translated for t in out["translated"]] == ["Kimchi Stew", "Bibimbap"]

    def test_merge_keeps_higher_confidence(self):
        out = run_pipeline(_frags(), ["normalize"])
        assert list(out) == ["normalized"]
        kimchi = out["normalized"][0]
        assert kimchi.confidence == 0.9
        assert kimchi.original == "김치찌게"
        assert kimchi.bbox == BBox(0, 30, 80, 20)

    def test_cleanse_only(self):
        out = run_pipeline(_frags(), ["cleanse"])
        assert list(out) == ["cleansed"]
        assert len(out["cleansed"]) == 3

    def test_classify(self):
        gen = _AlwaysSafe()
        out = run_pipeline(
            _frags(), ["classify"], context=UserSafetyContext.build(["peanuts"]), generator=gen,
        )
        assert list(out) == ["classified"]
        assert [c.safety_status for c in out["classified"]] == [SafetyStatus.SAFE, SafetyStatus.SAFE]
        assert gen.calls == 2

    def test_classify_without_context(self):
        with pytest.raises(ValueError):
            run_pipeline(_frags(), ["classify"])

    def test_empty_input(self):
        out = run_pipeline([], ["cleanse", "normalize", "translate"])
        assert out == {"cleansed": [], "normalized": [], "translated": []}
