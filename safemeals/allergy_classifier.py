# safemeals/allergy_classifier.py
"""
Allergy / diet safety classifier: third pipeline stage.

The judgment itself is delegated to a text generator (see `safemeals.ai_client`);
this module owns what surrounds that call:

  - prompt formatting (pure, deterministic: token lists are sorted)
  - generation constraints per mode
  - conservative parsing: anything that is not a clear verdict is DANGER

FAST mode asks for a single character, S or D. DETAILED mode asks for JSON
with a status (SAFE / CAUTION / DANGER), a one-sentence reason and the
ingredient list; it only runs when the caller asks for deeper analysis.

Every failure path below resolves to DANGER, never SAFE.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from .menu_translate import generate_menu_id, translate_name
from .ocr_types import ClassifiedItem, NormalizedItem, SafetyStatus, UserSafetyContext

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
FALLBACK_REASON = "Could not confirm this dish is safe; treat as unsafe and ask staff."


class ClassificationMode(str, Enum):
    FAST = "FAST"
    DETAILED = "DETAILED"


@dataclass(frozen=True)
class GenerationConstraints:
    """Settings the generator must honor for one call."""
    max_tokens: int
    temperature: float = 0.0
    stop_sequences: Tuple[str, ...] = ()
    allowed_outputs: Tuple[str, ...] = ()
    json_output: bool = False
    timeout: float = DEFAULT_TIMEOUT_SECONDS


FAST_CONSTRAINTS = GenerationConstraints(
    max_tokens=3,
    temperature=0.0,
    stop_sequences=("\n",),
    allowed_outputs=("S", "D"),
)

DETAILED_CONSTRAINTS = GenerationConstraints(
    max_tokens=400,
    temperature=0.0,
    allowed_outputs=("SAFE", "CAUTION", "DANGER"),
    json_output=True,
)


@dataclass(frozen=True)
class ClassificationRequest:
    mode: ClassificationMode
    prompt: str
    constraints: GenerationConstraints


class TextGenerator(Protocol):
    def generate(self, prompt: str, constraints: GenerationConstraints) -> str:
        ...


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------
DIET_RULES = """\
DIET RESTRICTION RULES:
- vegetarian: D if meat/poultry/fish/seafood tokens found
- vegan: D if any animal product tokens found (meat/dairy/eggs/honey)
- lacto_vegetarian: D if meat/poultry/fish/seafood/eggs tokens found
- ovo_vegetarian: D if meat/poultry/fish/seafood/dairy tokens found
- pesco_vegetarian: D if meat/poultry tokens found
- flexitarian: D if meat/poultry/fish/seafood tokens found
- halal: D if pork/alcohol tokens found
- kosher: D if pork/shellfish tokens found
- buddhist_vegetarian: D if meat/poultry/fish/seafood/garlic/onion tokens found
- gluten_free: D if wheat/gluten/flour tokens found
- pork_free: D if pork tokens found
- alcohol_free: D if alcohol tokens found
- garlic_onion_free: D if garlic/onion tokens found"""

FAST_PROMPT_TEMPLATE = """\
You are a food safety classifier for allergies AND dietary restrictions.

DECISION RULES (strictly follow):
- D: any user allergy token matches a menu ingredient token
- D: any user diet restriction is violated (e.g., meat for vegetarian, pork for halal)
- S: no allergy match and no diet violation

{diet_rules}

OUTPUT RULES:
- Output ONLY one character: S or D
- S = SAFE, D = DANGER
- NO explanation, NO reasoning, NO additional text

User allergies: {user_allergies}
User diets: {user_diets}
Menu ingredients: {menu_tokens}

Classification:"""

DETAILED_PROMPT_TEMPLATE = """\
You are a food safety analyst checking one restaurant menu item against a
diner's allergies and dietary restrictions.

ALLERGY RULES:
- DANGER: definitely contains one of the user's allergens
- CAUTION: might contain one (hidden ingredient, cross-contamination, "may contain")
- SAFE: no allergen detected

{diet_rules}

GENERAL RULES:
- Check BOTH allergies AND diet restrictions (a diet violation is DANGER)
- Be conservative: if unsure, answer CAUTION
- Keep the reason to one sentence, written in {target_language}
- List the dish's likely ingredients in English, lowercase

Menu item: {menu_name}
Known ingredients: {menu_tokens}
User allergies: {user_allergies}
User diets: {user_diets}

Output ONLY valid JSON, no markdown:
{{"status": "SAFE" | "CAUTION" | "DANGER", "reason": "...", "ingredients": ["..."]}}"""

LANGUAGE_NAMES = {
    "ko": "Korean",
    "en": "English",
    "ja": "Japanese",
    "zh": "Chinese",
    "es": "Spanish",
}


def _join(tokens: Iterable[str]) -> str:
    return ", ".join(sorted({t for t in tokens if t})) or "None"


def build_fast_prompt(
    user_allergies: Iterable[str],
    menu_tokens: Iterable[str],
    user_diets: Iterable[str] = (),
) -> str:
    return FAST_PROMPT_TEMPLATE.format(
        diet_rules=DIET_RULES,
        user_allergies=_join(user_allergies),
        user_diets=_join(user_diets),
        menu_tokens=_join(menu_tokens),
    )


def build_detailed_prompt(
    menu_name: str,
    user_allergies: Iterable[str],
    menu_tokens: Iterable[str],
    user_diets: Iterable[str] = (),
    language: str = "en",
) -> str:
    return DETAILED_PROMPT_TEMPLATE.format(
        diet_rules=DIET_RULES.replace(": D if", ": DANGER if"),
        target_language=LANGUAGE_NAMES.get(language, "English"),
        menu_name=menu_name or "None",
        user_allergies=_join(user_allergies),
        user_diets=_join(user_diets),
        menu_tokens=_join(menu_tokens),
    )


def menu_tokens_for(item: NormalizedItem, ingredients: Optional[Sequence[str]] = None) -> List[str]:
    tokens = [item.normalized]
    tokens.extend(str(i).strip().lower() for i in (ingredients or []) if str(i).strip())
    return tokens


def build_request(
    item: NormalizedItem,
    context: UserSafetyContext,
    mode: ClassificationMode = ClassificationMode.FAST,
    ingredients: Optional[Sequence[str]] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> ClassificationRequest:
    tokens = menu_tokens_for(item, ingredients)
    if mode is ClassificationMode.FAST:
        prompt = build_fast_prompt(context.allergy_tokens, tokens, context.diet_tokens)
        constraints = FAST_CONSTRAINTS
    else:
        prompt = build_detailed_prompt(
            item.normalized,
            context.allergy_tokens,
            tokens[1:],
            context.diet_tokens,
            context.language,
        )
        constraints = DETAILED_CONSTRAINTS
    if timeout != constraints.timeout:
        constraints = replace(constraints, timeout=timeout)
    return ClassificationRequest(mode=mode, prompt=prompt, constraints=constraints)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------
_FAST_TOKEN_RE = re.compile(r"[SD]")
_DETAILED_STATUSES = {s.value: s for s in SafetyStatus}


def parse_status(raw: Optional[str]) -> SafetyStatus:
    """
    Map a FAST-mode response to SAFE/DANGER.

    The first S or D in the upper-cased response decides ("SD" -> SAFE).
    No S or D at all -> DANGER.
    """
    normalized = raw.strip().upper() if isinstance(raw, str) else ""
    match = _FAST_TOKEN_RE.search(normalized)
    if not match:
        log.warning("Classifier verdict unreadable, treating as DANGER: %r", raw)
        return SafetyStatus.DANGER
    return SafetyStatus.SAFE if match.group(0) == "S" else SafetyStatus.DANGER


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*\n?", "", text)
        text = re.sub(r"\n?```\s*$", "", text)
    return text


def parse_detailed(raw: Optional[str]) -> Tuple[SafetyStatus, str, Tuple[str, ...]]:
    """Parse a DETAILED-mode JSON response into (status, reason, ingredients)."""
    try:
        data = json.loads(_strip_code_fence(raw or ""))
    except (json.JSONDecodeError, TypeError) as e:
        log.warning("Detailed verdict is not JSON, treating as DANGER: %s", e)
        return SafetyStatus.DANGER, FALLBACK_REASON, ()

    if not isinstance(data, dict):
        log.warning("Detailed verdict is not an object, treating as DANGER: %r", raw)
        return SafetyStatus.DANGER, FALLBACK_REASON, ()

    status = _DETAILED_STATUSES.get(str(data.get("status") or "").strip().upper())
    if status is None:
        log.warning("Detailed verdict has no usable status, treating as DANGER: %r", raw)
        return SafetyStatus.DANGER, FALLBACK_REASON, ()

    reason = str(data.get("reason") or "").strip()
    ingredients = data.get("ingredients")
    if not isinstance(ingredients, list):
        ingredients = []
    cleaned = tuple(str(i).strip() for i in ingredients if str(i).strip())
    return status, reason, cleaned


# ---------------------------------------------------------------------------
# Main entry
# ---------------------------------------------------------------------------
def classify_item(
    item: NormalizedItem,
    context: UserSafetyContext,
    mode: ClassificationMode = ClassificationMode.FAST,
    generator: Optional[TextGenerator] = None,
    *,
    ingredients: Optional[Sequence[str]] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> ClassifiedItem:
    """Classify one menu item. Never raises for collaborator failures."""
    request = build_request(item, context, mode, ingredients, timeout)
    known_ingredients = tuple(menu_tokens_for(item, ingredients)[1:])

    def _result(status: SafetyStatus, reason: str, found: Tuple[str, ...]) -> ClassifiedItem:
        return ClassifiedItem(
            id=generate_menu_id(),
            original_name=item.original,
            translated_name=translate_name(item.normalized),
            safety_status=status,
            reason=reason,
            ingredients=found or known_ingredients,
        )

    if generator is None:
        log.warning("No classifier configured; %r marked DANGER", item.normalized)
        return _result(SafetyStatus.DANGER, FALLBACK_REASON, ())

    try:
        raw = generator.generate(request.prompt, request.constraints)
    except Exception as e:
        log.warning("Classifier call failed for %r, treating as DANGER: %s", item.normalized, e)
        return _result(SafetyStatus.DANGER, FALLBACK_REASON, ())

    if request.mode is ClassificationMode.FAST:
        status = parse_status(raw)
        return _result(status, "" if status is SafetyStatus.SAFE else _fast_reason(raw), ())

    status, reason, found = parse_detailed(raw)
    return _result(status, reason, found)


def _fast_reason(raw: Optional[str]) -> str:
    if isinstance(raw, str) and _FAST_TOKEN_RE.search(raw.upper()):
        return "Possible allergen or diet conflict."
    return FALLBACK_REASON


def classify_items(
    items: Sequence[NormalizedItem],
    context: UserSafetyContext,
    mode: ClassificationMode = ClassificationMode.FAST,
    generator: Optional[TextGenerator] = None,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> List[ClassifiedItem]:
    return [
        classify_item(item, context, mode, generator, timeout=timeout)
        for item in items
    ]
