# tests/test_ocr_worker.py
"""
Tesseract-backed OCR worker (Tesseract itself is faked).

Covers:
  group_words_into_fragments: line grouping, empty / conf<0 words skipped,
  mean confidence in [0, 1], union bbox, top-to-bottom order, scale undo
  run_ocr: grayscale + upscale before Tesseract, boxes mapped back to the
  original image, Tesseract failures / bad bytes -> OcrError
  tesseract_health: version probe failure reported, not raised
"""

from __future__ import annotations

import io

import pytest
import pytesseract
from PIL import Image

from portal import ocr_worker
from portal.ocr_worker import (
    MIN_LONG_EDGE,
    OcrError,
    group_words_into_fragments,
    run_ocr,
    tesseract_health,
)
from safemeals.ocr_types import BBox


def _data(rows):
    """rows: (text, conf, left, top, width, height, line_num)"""
    cols = {k: [] for k in ("text", "conf", "left", "top", "width", "height", "block_num", "par_num", "line_num")}
    for text, conf, left, top, width, height, line in rows:
        cols["text"].append(text)
        cols["conf"].append(conf)
        cols["left"].append(left)
        cols["top"].append(top)
        cols["width"].append(width)
        cols["height"].append(height)
        cols["block_num"].append(1)
        cols["par_num"].append(1)
        cols["line_num"].append(line)
    return cols


def _png(size=(200, 100)):
    buf = io.BytesIO()
    Image.new("RGB", size, "white").save(buf, format="PNG")
    return buf.getvalue()


SAMPLE = _data([
    ("", "-1", 0, 0, 0, 0, 0),
    ("8000원", "70", 10, 50, 60, 20, 2),
    ("찌개", "80", 60, 12, 40, 20, 1),
    ("김치", "90", 10, 10, 40, 20, 1),
    ("   ", "-1", 0, 0, 0, 0, 2),
])


class TestGrouping:
    def test_lines_grouped_and_ordered(self):
        frags = group_words_into_fragments(SAMPLE)
        assert [f.text for f in frags] == ["김치 찌개", "8000원"]
        assert frags[0].confidence == pytest.approx(0.85)
        assert frags[0].bbox == BBox(10, 10, 90, 22)
        assert frags[1].bbox == BBox(10, 50, 60, 20)

    def test_scale_undone(self):
        frags = group_words_into_fragments(SAMPLE, scale=2.0)
        assert frags[0].bbox == BBox(5, 5, 45, 11)

    def test_nothing_readable(self):
        assert group_words_into_fragments(_data([("", "-1", 0, 0, 0, 0, 0)])) == []
        assert group_words_into_fragments({}) == []


class TestRunOcr:
    def test_upscaled_grayscale_and_boxes_mapped_back(self, monkeypatch):
        seen = {}

        def fake_image_to_data(image, lang=None, config=None, output_type=None):
            seen["size"] = image.size
            seen["mode"] = image.mode
            seen["lang"] = lang
            return _data([("비빔밥", "88", 80, 80, 320, 160, 1)])

        monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)
        frags = run_ocr(_png((200, 100)))

        assert seen["size"] == (MIN_LONG_EDGE, MIN_LONG_EDGE // 2)
        assert seen["mode"] == "L"
        assert seen["lang"] == ocr_worker.TESSERACT_LANG
        assert len(frags) == 1
        assert frags[0].text == "비빔밥"
        assert frags[0].confidence == pytest.approx(0.88)
        assert frags[0].bbox == BBox(10, 10, 40, 20)

    def test_large_image_not_rescaled(self, monkeypatch):
        seen = {}

        def fake_image_to_data(image, **kwargs):
            seen["size"] = image.size
            return _data([])

        monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)
        assert run_ocr(_png((2000, 1000))) == []
        assert seen["size"] == (2000, 1000)

    @pytest.mark.parametrize("payload", [b"", b"definitely not an image"])
    def test_bad_bytes(self, payload):
        with pytest.raises(OcrError):
            run_ocr(payload)

    def test_tesseract_missing(self, monkeypatch):
        def missing(*args, **kwargs):
            raise pytesseract.TesseractNotFoundError()

        monkeypatch.setattr(pytesseract, "image_to_data", missing)
        with pytest.raises(OcrError):
            run_ocr(_png())


class TestHealth:
    def test_probe_failure_reported(self, monkeypatch):
        def no_binary():
            raise pytesseract.TesseractNotFoundError()

        monkeypatch.setattr(pytesseract, "get_tesseract_version", no_binary)
        info = tesseract_health()
        assert info["version"] is None
        assert info["lang"] == ocr_worker.TESSERACT_LANG
        assert info["ocr_worker_version"] == ocr_worker.OCR_WORKER_VERSION
