# portal/contracts.py
from __future__ import annotations
from typing import Any, Dict, List, Tuple

from safemeals.menu_pipeline import PIPELINE_STAGES

SUPPORTED_LANGUAGES = {"ko", "en", "ja", "zh", "es"}
FORM_TRUE = {"1", "true", "yes"}
FORM_BOOLEANS = FORM_TRUE | {"0", "false", "no"}


def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def validate_ocr_results(ocr_results: Any) -> Tuple[bool, str]:
    if not isinstance(ocr_results, list):
        return False, "ocrResults must be an array"

    for i, frag in enumerate(ocr_results):
        if not isinstance(frag, dict):
            return False, f"ocrResults[{i}] must be an object"
        if not isinstance(frag.get("text", ""), str):
            return False, f"ocrResults[{i}].text must be a string"
        conf = frag.get("confidence", 0)
        if not _is_number(conf) or not 0 <= conf <= 1:
            return False, f"ocrResults[{i}].confidence must be a number in [0, 1]"
        box = frag.get("bbox", frag.get("boundingBox"))
        if box is not None:
            if not isinstance(box, dict):
                return False, f"ocrResults[{i}].bbox must be an object"
            for k, v in box.items():
                if not _is_number(v):
                    return False, f"ocrResults[{i}].bbox.{k} must be a number"

    return True, ""


def _validate_string_list(payload: Dict[str, Any], key: str) -> Tuple[bool, str]:
    values = payload.get(key, [])
    if values is None:
        return True, ""
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        return False, f"{key} must be an array of strings"
    return True, ""


def validate_pipeline_payload(payload: Any) -> Tuple[bool, str]:
    if not isinstance(payload, dict):
        return False, "request body must be a JSON object"

    ok, err = validate_ocr_results(payload.get("ocrResults"))
    if not ok:
        return ok, err

    stages = payload.get("stages")
    if stages is not None:
        if not isinstance(stages, list) or not all(isinstance(s, str) for s in stages):
            return False, "stages must be an array of strings"
        unknown: List[str] = [s for s in stages if s not in PIPELINE_STAGES]
        if unknown:
            return False, f"unknown stages: {', '.join(unknown)}"

    for key in ("allergies", "diets"):
        ok, err = _validate_string_list(payload, key)
        if not ok:
            return ok, err

    return True, ""


def _validate_profile(payload: Dict[str, Any]) -> Tuple[bool, str]:
    for key in ("allergies", "diets"):
        ok, err = _validate_string_list(payload, key)
        if not ok:
            return ok, err

    language = payload.get("language")
    if language is not None and (not isinstance(language, str) or language not in SUPPORTED_LANGUAGES):
        return False, f"language must be one of: {', '.join(sorted(SUPPORTED_LANGUAGES))}"
    return True, ""


def validate_upload_form(form: Any) -> Tuple[bool, str]:
    """Multipart analyze request: the same profile rules as the JSON body."""
    ok, err = _validate_profile({
        "allergies": form.getlist("allergies"),
        "diets": form.getlist("diets"),
        "language": form.get("language"),
    })
    if not ok:
        return ok, err

    detailed = (form.get("detailed") or "").strip().lower()
    if detailed and detailed not in FORM_BOOLEANS:
        return False, "detailed must be one of: " + ", ".join(sorted(FORM_BOOLEANS))

    return True, ""


def validate_analyze_payload(payload: Any) -> Tuple[bool, str]:
    if not isinstance(payload, dict):
        return False, "request body must be a JSON object"

    ok, err = validate_ocr_results(payload.get("ocrResults"))
    if not ok:
        return ok, err

    ok, err = _validate_profile(payload)
    if not ok:
        return ok, err

    if "detailed" in payload and not isinstance(payload["detailed"], bool):
        return False, "detailed must be a boolean"

    return True, ""
