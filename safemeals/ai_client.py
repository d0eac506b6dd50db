# safemeals/ai_client.py
"""
Anthropic-backed text generator for the allergy classifier.

Usage:
    from safemeals.ai_client import get_generator

    generator = get_generator()          # None when no API key is configured
    raw = generator.generate(prompt, FAST_CONSTRAINTS)

Requires ANTHROPIC_API_KEY in environment (loaded via .env).
Models are picked by output shape: single-token FAST verdicts go to the
small model, DETAILED JSON verdicts to the larger one.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from .allergy_classifier import GenerationConstraints

log = logging.getLogger(__name__)

DEFAULT_FAST_MODEL = "claude-haiku-4-5"
DEFAULT_DETAILED_MODEL = "claude-sonnet-4-5"

_SYSTEM_PROMPT = (
    "You classify restaurant menu items for diners with food allergies and "
    "dietary restrictions. Follow the output rules in the user message exactly."
)


class AnthropicGenerator:
    """Send one prompt to Claude under the given constraints; return the raw text."""

    def __init__(
        self,
        client,
        fast_model: str = DEFAULT_FAST_MODEL,
        detailed_model: str = DEFAULT_DETAILED_MODEL,
    ):
        self.client = client
        self.fast_model = fast_model
        self.detailed_model = detailed_model

    def _model_for(self, constraints: GenerationConstraints) -> str:
        return self.detailed_model if constraints.json_output else self.fast_model

    def generate(self, prompt: str, constraints: GenerationConstraints) -> str:
        kwargs = {
            "model": self._model_for(constraints),
            "max_tokens": constraints.max_tokens,
            "temperature": constraints.temperature,
            "system": _SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
            "timeout": constraints.timeout,
        }
        if constraints.stop_sequences:
            kwargs["stop_sequences"] = list(constraints.stop_sequences)

        message = self.client.messages.create(**kwargs)

        resp_text = ""
        for block in message.content:
            if hasattr(block, "text"):
                resp_text += block.text
        return resp_text


# ---------------------------------------------------------------------------
# Claude API client (lazy init)
# ---------------------------------------------------------------------------
_generator: Optional[AnthropicGenerator] = None


def get_generator() -> Optional[AnthropicGenerator]:
    """Lazy-init the shared generator. Returns None if API key not set."""
    global _generator
    if _generator is not None:
        return _generator
    api_key = os.environ.get("ANTHROPIC_API_KEY", "").strip()
    if not api_key:
        log.info("No Anthropic API key configured; classifier disabled")
        return None
    try:
        import anthropic
        client = anthropic.Anthropic(api_key=api_key, max_retries=1)
    except Exception as e:
        log.warning("Failed to init Anthropic client: %s", e)
        return None
    _generator = AnthropicGenerator(
        client,
        fast_model=os.environ.get("SAFEMEALS_FAST_MODEL") or DEFAULT_FAST_MODEL,
        detailed_model=os.environ.get("SAFEMEALS_DETAILED_MODEL") or DEFAULT_DETAILED_MODEL,
    )
    return _generator


def set_generator(generator) -> None:
    """Replace the shared generator (tests inject fakes here)."""
    global _generator
    _generator = generator
