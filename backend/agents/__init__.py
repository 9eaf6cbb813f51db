"""
ProphetX Agents Package

LLM-backed collaborators of the market:
- Rationale generator (the oracle's bullet-point justification)
- Prophet chat (short answers about the current market)
"""

from agents.llm_provider import invoke_with_fallback, available_providers, ModelTier
from agents.rationale import ProphetRationaleGenerator
from agents.prophet_chat import ProphetChat, get_prophet_chat

__all__ = [
    "invoke_with_fallback",
    "available_providers",
    "ModelTier",
    "ProphetRationaleGenerator",
    "ProphetChat",
    "get_prophet_chat",
]
