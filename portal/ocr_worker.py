# portal/ocr_worker.py
"""
OCR provider for scan uploads: image bytes -> list[OcrFragment].

Tesseract word boxes are grouped into lines (block, paragraph, line); each
line becomes one fragment whose confidence is the mean word confidence
scaled to [0, 1] and whose box is the union of its word boxes.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Tuple

import pytesseract
from PIL import Image, ImageOps, UnidentifiedImageError
from pytesseract import Output

from safemeals.ocr_types import BBox, OcrFragment

log = logging.getLogger(__name__)

OCR_WORKER_VERSION = "safemeals / grayscale + upscale / line-grouped image_to_data"

TESSERACT_LANG = os.getenv("TESSERACT_LANG") or "kor+eng"
TESSERACT_CONFIG = os.getenv("TESSERACT_CONFIG") or "--oem 1 --psm 6 -c preserve_interword_spaces=1"

# Small phone crops read much better once upscaled.
MIN_LONG_EDGE = 1600


class OcrError(RuntimeError):
    """The image could not be read or Tesseract failed."""


def configure_tesseract() -> str:
    """
    Point pytesseract at a binary: TESSERACT_CMD if it exists, else PATH.
    Returns the command in use ("" when none was found).
    """
    explicit = os.getenv("TESSERACT_CMD")
    if explicit and Path(explicit).exists():
        pytesseract.pytesseract.tesseract_cmd = explicit
        return explicit
    which = shutil.which("tesseract") or shutil.which("tesseract.exe")
    if which:
        pytesseract.pytesseract.tesseract_cmd = which
        return which
    return ""


def tesseract_health() -> Dict[str, object]:
    cmd = getattr(pytesseract.pytesseract, "tesseract_cmd", "") or ""
    try:
        version = str(pytesseract.get_tesseract_version())
    except Exception as e:
        log.warning("Tesseract probe failed: %s", e)
        version = None
    return {
        "cmd": cmd,
        "version": version,
        "lang": TESSERACT_LANG,
        "ocr_worker_version": OCR_WORKER_VERSION,
    }


# ----------------------------------------------------------------------
# Preprocessing
# ----------------------------------------------------------------------

def _load_image(image_bytes: bytes) -> Image.Image:
    if not image_bytes:
        raise OcrError("empty image")
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise OcrError(f"cannot decode image: {e}") from e
    return img


def _prep_image(img: Image.Image) -> Tuple[Image.Image, float]:
    """Grayscale + upscale. Returns the image and the scale applied."""
    img = ImageOps.exif_transpose(img)
    gray = ImageOps.grayscale(img)
    long_edge = max(gray.size)
    scale = 1.0
    if 0 < long_edge < MIN_LONG_EDGE:
        scale = MIN_LONG_EDGE / float(long_edge)
        gray = gray.resize(
            (int(round(gray.width * scale)), int(round(gray.height * scale))),
            Image.Resampling.LANCZOS,
        )
    return gray, scale


# ----------------------------------------------------------------------
# Word -> line grouping
# ----------------------------------------------------------------------

def _num(data: Dict[str, List], column: str, i: int) -> int:
    values = data.get(column)
    return int(values[i]) if values else 0


def _words_from_data(data: Dict[str, List]) -> List[dict]:
    words = []
    for i, text in enumerate(data.get("text", [])):
        text = str(text or "").strip()
        try:
            conf = float(data["conf"][i])
        except (KeyError, IndexError, TypeError, ValueError):
            continue
        if not text or conf < 0:
            continue
        words.append({
            "text": text,
            "conf": conf,
            "left": int(data["left"][i]),
            "top": int(data["top"][i]),
            "width": int(data["width"][i]),
            "height": int(data["height"][i]),
            "key": (_num(data, "block_num", i), _num(data, "par_num", i), _num(data, "line_num", i)),
        })
    return words


def group_words_into_fragments(data: Dict[str, List], scale: float = 1.0) -> List[OcrFragment]:
    """Turn pytesseract.image_to_data(..., Output.DICT) into line fragments, top to bottom."""
    grouped: Dict[Tuple[int, int, int], List[dict]] = {}
    for w in _words_from_data(data):
        grouped.setdefault(w["key"], []).append(w)

    lines = []
    for ws in grouped.values():
        ws.sort(key=lambda w: w["left"])
        x0 = min(w["left"] for w in ws)
        y0 = min(w["top"] for w in ws)
        x1 = max(w["left"] + w["width"] for w in ws)
        y1 = max(w["top"] + w["height"] for w in ws)
        conf = sum(w["conf"] for w in ws) / len(ws) / 100.0
        lines.append(OcrFragment(
            text=" ".join(w["text"] for w in ws),
            confidence=round(min(1.0, max(0.0, conf)), 4),
            bbox=BBox(
                x=round(x0 / scale),
                y=round(y0 / scale),
                w=round((x1 - x0) / scale),
                h=round((y1 - y0) / scale),
            ),
        ))

    lines.sort(key=lambda f: (f.bbox.y, f.bbox.x))
    return lines


def run_ocr(image_bytes: bytes) -> List[OcrFragment]:
    """OCR one menu photo. Raises OcrError; never returns made-up text."""
    img = _load_image(image_bytes)
    gray, scale = _prep_image(img)
    try:
        data = pytesseract.image_to_data(
            gray,
            lang=TESSERACT_LANG,
            config=TESSERACT_CONFIG,
            output_type=Output.DICT,
        )
    except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as e:
        raise OcrError(f"tesseract failed: {e}") from e

    fragments = group_words_into_fragments(data, scale)
    log.info("OCR produced %d fragments (scale=%.2f)", len(fragments), scale)
    return fragments


configure_tesseract()
