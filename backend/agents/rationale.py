"""
Rationale Generator - ProphetX

Writes the oracle's justification for a daily call as 4-6 terse bullets.
"""

import json
import logging
import re
from typing import Callable, List

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from agents.llm_provider import invoke_with_fallback
from market.errors import GenerationFailed

logger = logging.getLogger(__name__)

LLMInvoker = Callable[[List[BaseMessage]], str]

SYSTEM_PROMPT = """You are ProphetX, an AI oracle that makes daily predictions on crypto assets.
You write brief, analytical rationales in a cold tone. No hype, no emotion,
no financial advice disclaimers (those are shown separately).
Always answer with JSON only: {"bullets": ["...", "..."]}"""

HUMAN_PROMPT = """Generate a rationale (4-6 bullet points) for why you predict {asset_name} ({asset_type}) will move {direction} by {threshold}% in the next 24 hours.

{mode_note}

Requirements:
- Keep each bullet point concise (1-2 sentences max)
- Focus on technical indicators, volume, sentiment, or market structure
- Return JSON with a 'bullets' array"""

SIMULATE_NOTE = "Note: This is a SIMULATED prediction based on historical patterns and market dynamics."
LIVE_NOTE = "Base this on real market data and trends."

MIN_BULLETS = 1
MAX_BULLETS = 6


def _extract_json(text: str) -> dict:
    """Parse the first JSON object in a model reply (tolerates code fences)."""
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if not match:
        raise ValueError("No JSON object in response")
    return json.loads(match.group(0))


class ProphetRationaleGenerator:
    """
    RationaleGenerator backed by the LLM provider chain.
    Raises GenerationFailed on any failure; callers decide the fallback.
    """

    def __init__(self, llm_invoke: LLMInvoker = None):
        self.llm_invoke = llm_invoke or (lambda messages: invoke_with_fallback(messages, tier="balanced"))

    def generate(
        self,
        asset_type: str,
        asset_name: str,
        direction: str,
        threshold_percent: float,
        mode: str,
    ) -> List[str]:
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=HUMAN_PROMPT.format(
                asset_name=asset_name,
                asset_type=asset_type,
                direction=direction,
                threshold=f"{threshold_percent:g}",
                mode_note=SIMULATE_NOTE if mode == "simulate" else LIVE_NOTE,
            )),
        ]

        try:
            response = self.llm_invoke(messages)
        except GenerationFailed:
            raise
        except Exception as e:
            raise GenerationFailed(f"Rationale generation failed: {e}") from e

        try:
            parsed = _extract_json(response)
        except ValueError as e:
            raise GenerationFailed(f"Rationale was not valid JSON: {e}") from e

        bullets = [str(b).strip() for b in parsed.get("bullets", []) if str(b).strip()]
        if len(bullets) < MIN_BULLETS:
            raise GenerationFailed("Rationale contained no bullets")

        logger.info(f"Generated {len(bullets[:MAX_BULLETS])} rationale bullets for {asset_name}")
        return bullets[:MAX_BULLETS]
