# tests/test_menu_normalize.py
"""
Menu name normalization and near-duplicate merge.

Covers:
  standardize_spacing, fix_typos, expand_abbreviations
  levenshtein_distance / calculate_similarity edge cases
  deduplicate_and_merge: exact and fuzzy merges, confidence-preserving keep,
  tie keeps first, no surviving pair satisfies the merge predicate
  end-to-end cleanse -> normalize scenarios
"""

from __future__ import annotations

import itertools

import pytest

from safemeals.menu_normalize import (
    SIMILARITY_THRESHOLD,
    calculate_similarity,
    deduplicate_and_merge,
    expand_abbreviations,
    fix_typos,
    is_duplicate,
    levenshtein_distance,
    normalize_menu_names,
    normalize_name,
    standardize_spacing,
)
from safemeals.ocr_cleansing import cleanse_ocr_text
from safemeals.ocr_types import BBox, CleansedFragment, NormalizedItem, OcrFragment


def _item(name, conf=0.9, bbox=None):
    return NormalizedItem(original=name, normalized=name, confidence=conf, bbox=bbox or BBox())


def _cleansed(text, conf=0.9, bbox=None):
    return CleansedFragment(original=text, cleansed=text, confidence=conf, bbox=bbox or BBox())


class TestPerItemRewrites:
    def test_spacing_removed_between_letters(self):
        assert standardize_spacing("김치 찌개") == "김치찌개"

    def test_spacing_removed_next_to_digits(self):
        assert standardize_spacing("삼겹살 2 인분") == "삼겹살2인분"

    def test_spacing_between_digits_kept(self):
        assert standardize_spacing("10 000") == "10 000"

    def test_spacing_every_gap_handled(self):
        # adjacent single-letter words all join
        assert standardize_spacing("a b c d") == "abcd"

    def test_typo_variants_converge(self):
        for typo in ("김치찌게", "김치찌깨", "김치찌계", "김치짜게"):
            assert fix_typos(typo) == "김치찌개"

    def test_abbreviation_whole_token(self):
        assert expand_abbreviations("삼겹") == "삼겹살"
        assert expand_abbreviations("김찌 세트") == "김치찌개 세트"

    def test_abbreviation_at_word_start(self):
        assert expand_abbreviations("삼겹1인분") == "삼겹살1인분"

    def test_full_name_not_reexpanded(self):
        assert expand_abbreviations("삼겹살") == "삼겹살"
        assert expand_abbreviations("삼계탕") == "삼계탕"

    def test_unknown_text_unchanged(self):
        assert expand_abbreviations("비빔밥") == "비빔밥"

    def test_normalize_name_order(self):
        # spacing first, then typo fix
        assert normalize_name("김치 찌게") == "김치찌개"


class TestSimilarity:
    def test_levenshtein_basics(self):
        assert levenshtein_distance("", "") == 0
        assert levenshtein_distance("abc", "") == 3
        assert levenshtein_distance("kitten", "sitting") == 3

    def test_two_empty_strings_fully_similar(self):
        assert calculate_similarity("", "") == 100.0

    def test_one_empty_zero(self):
        assert calculate_similarity("", "김치") == 0.0
        assert calculate_similarity("김치", "") == 0.0

    def test_one_edit_in_four(self):
        assert calculate_similarity("김치찌개", "김치찌게") == pytest.approx(75.0)

    def test_duplicate_is_case_insensitive(self):
        assert is_duplicate(_item("Bibimbap"), _item("bibimbap"))

    def test_threshold_inclusive(self):
        # 5 chars, 1 edit -> exactly 80%
        assert calculate_similarity("abcde", "abcdx") == pytest.approx(SIMILARITY_THRESHOLD)
        assert is_duplicate(_item("abcde"), _item("abcdx"))


class TestDeduplicate:
    def test_higher_confidence_wins_with_its_bbox(self):
        low = _item("불고기", 0.7, BBox(0, 0, 1, 1))
        high = _item("불고기", 0.95, BBox(5, 5, 9, 9))
        out = deduplicate_and_merge([low, high])
        assert len(out) == 1
        assert out[0].confidence == 0.95
        assert out[0].bbox == BBox(5, 5, 9, 9)

    def test_tie_keeps_first(self):
        first = _item("불고기", 0.8, BBox(1, 1, 1, 1))
        second = _item("불고기", 0.8, BBox(2, 2, 2, 2))
        out = deduplicate_and_merge([first, second])
        assert out == [first]

    def test_distinct_items_kept_in_order(self):
        out = deduplicate_and_merge([_item("비빔밥"), _item("냉면"), _item("불고기")])
        assert [i.normalized for i in out] == ["비빔밥", "냉면", "불고기"]

    def test_replacement_absorbs_other_neighbours(self):
        # the first two are 75% similar and both kept; the third is one edit
        # from each, so replacing the first must also swallow the second
        items = [
            _item("abcdefgh", 0.5),
            _item("abcdefxy", 0.6),
            _item("abcdefgy", 0.9),
        ]
        out = deduplicate_and_merge(items)
        assert out == [items[2]]

    def test_no_mergeable_pair_survives(self):
        names = ["김치찌개", "김치찌개", "된장찌개", "된장국", "된장찌게", "불고기", "불고기덮밥"]
        out = normalize_menu_names([_cleansed(n, 0.5 + i * 0.05) for i, n in enumerate(names)])
        for a, b in itertools.combinations(out, 2):
            assert not is_duplicate(a, b)

    def test_empty(self):
        assert normalize_menu_names(None) == []
        assert normalize_menu_names([]) == []


class TestScenarios:
    def test_noise_and_space(self):
        frags = [OcrFragment("김치 찌개##", 0.9, BBox(10, 20, 100, 30))]
        out = normalize_menu_names(cleanse_ocr_text(frags))
        assert len(out) == 1
        assert out[0].normalized == "김치찌개"
        assert out[0].bbox == BBox(10, 20, 100, 30)

    def test_abbreviation(self):
        out = normalize_menu_names(cleanse_ocr_text([OcrFragment("삼겹", 0.88)]))
        assert out[0].normalized == "삼겹살"

    def test_typo_merge_keeps_higher_confidence(self):
        frags = [OcrFragment("김치찌개", 0.95), OcrFragment("김치찌게", 0.88)]
        out = normalize_menu_names(cleanse_ocr_text(frags))
        assert len(out) == 1
        assert out[0].normalized == "김치찌개"
        assert out[0].confidence == 0.95
