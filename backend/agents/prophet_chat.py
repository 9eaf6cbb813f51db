"""
Prophet Chat Agent

Answers user questions about the current market in the oracle's voice.
Short replies only, falls back to a fixed message when no model answers.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from agents.llm_provider import invoke_with_fallback

logger = logging.getLogger(__name__)

FALLBACK_ANSWER = "Unable to connect to ProphetX. Please try again."
MAX_QUESTION_LENGTH = 500

SYSTEM_PROMPT = """You are ProphetX, an AI prediction oracle. Answer questions about the current market prediction.

Requirements:
- Keep response to 3-6 lines max
- Analytical, cold tone
- NO financial advice disclaimers
- Be helpful but brief"""


class ProphetChat:
    """Question answering over a market and its rationale."""

    def __init__(self, llm_invoke: Callable[[List[BaseMessage]], str] = None):
        self.llm_invoke = llm_invoke or (lambda messages: invoke_with_fallback(messages, tier="fast"))

    def answer(self, question: str, market_context: Optional[Dict[str, Any]] = None) -> str:
        question = question.strip()[:MAX_QUESTION_LENGTH]
        content = f"Question: {question}"
        if market_context:
            content += f"\n\nMarket Context: {json.dumps(market_context, default=str)}"

        messages = [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=content)]
        try:
            reply = self.llm_invoke(messages)
        except Exception as e:
            logger.error(f"Error answering question: {e}")
            return FALLBACK_ANSWER

        reply = (reply or "").strip()
        return reply or FALLBACK_ANSWER


# Singleton instance
_prophet_chat: Optional[ProphetChat] = None


def get_prophet_chat() -> ProphetChat:
    """Get singleton ProphetChat instance."""
    global _prophet_chat
    if _prophet_chat is None:
        _prophet_chat = ProphetChat()
    return _prophet_chat
