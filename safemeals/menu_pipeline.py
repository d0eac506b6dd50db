# safemeals/menu_pipeline.py
"""
Stage runner: OCR fragments -> cleansed -> normalized -> translated / classified.

A later stage pulls in the earlier ones it depends on, but only the stages
that were asked for appear in the response.

    run_pipeline(fragments, ["normalize"])
    -> {"normalized": [...]}
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .allergy_classifier import (
    DEFAULT_TIMEOUT_SECONDS,
    ClassificationMode,
    TextGenerator,
    classify_items,
)
from .menu_normalize import normalize_menu_names
from .menu_translate import translate_menu_names
from .ocr_cleansing import cleanse_ocr_text
from .ocr_types import OcrFragment, UserSafetyContext

log = logging.getLogger(__name__)

PIPELINE_STAGES = ("cleanse", "normalize", "translate", "classify")
DEFAULT_STAGES = ("cleanse", "normalize", "translate")


def validate_stages(stages: Optional[Iterable[str]]) -> List[str]:
    if stages is None:
        return list(DEFAULT_STAGES)
    wanted = [str(s) for s in stages]
    unknown = [s for s in wanted if s not in PIPELINE_STAGES]
    if unknown:
        raise ValueError(f"unknown pipeline stage(s): {', '.join(unknown)}")
    return wanted


def run_pipeline(
    fragments: Sequence[OcrFragment],
    stages: Optional[Iterable[str]] = None,
    *,
    context: Optional[UserSafetyContext] = None,
    generator: Optional[TextGenerator] = None,
    mode: ClassificationMode = ClassificationMode.FAST,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> Dict[str, List[Any]]:
    """Run the requested stages and return plain records keyed by stage output."""
    wanted = validate_stages(stages)
    if "classify" in wanted and context is None:
        raise ValueError("the classify stage needs a user safety context")

    response: Dict[str, List[Any]] = {}

    cleansed = cleanse_ocr_text(fragments)
    if "cleanse" in wanted:
        response["cleansed"] = cleansed

    if not {"normalize", "translate", "classify"} & set(wanted):
        return response

    normalized = normalize_menu_names(cleansed)
    if "normalize" in wanted:
        response["normalized"] = normalized

    if "translate" in wanted:
        response["translated"] = translate_menu_names(normalized)

    if "classify" in wanted:
        response["classified"] = classify_items(
            normalized, context, mode, generator, timeout=timeout
        )

    log.info(
        "Pipeline stages=%s fragments=%d items=%d",
        ",".join(wanted), len(fragments), len(normalized),
    )
    return response
