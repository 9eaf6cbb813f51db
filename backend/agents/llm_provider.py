"""
LLM Provider Wrapper for ProphetX Agents

Provides a unified interface for LLM access with:
1. Multi-provider fallback (Groq → OpenAI → Anthropic)
2. Rate limit handling with automatic retry
3. Configurable model tier per agent

Usage:
    from agents.llm_provider import invoke_with_fallback

    text = invoke_with_fallback(messages, tier="fast")
"""

import os
import time
import logging
from typing import List, Dict, Any, Optional, Union
from enum import Enum

from dotenv import load_dotenv
from langchain_core.messages import BaseMessage

from market.errors import GenerationFailed

load_dotenv()

logger = logging.getLogger(__name__)


class ModelTier(Enum):
    """Model tiers for different use cases."""
    FAST = "fast"           # Chat replies
    BALANCED = "balanced"   # Market rationales


# Model configurations by tier and provider
MODEL_CONFIG = {
    ModelTier.FAST: {
        "groq": {"model": "llama-3.1-8b-instant", "temperature": 0.3},
        "openai": {"model": "gpt-4o-mini", "temperature": 0.3},
        "anthropic": {"model": "claude-3-haiku-20240307", "temperature": 0.3},
    },
    ModelTier.BALANCED: {
        "groq": {"model": "llama-3.3-70b-versatile", "temperature": 0.4},
        "openai": {"model": "gpt-4o-mini", "temperature": 0.4},
        "anthropic": {"model": "claude-3-5-sonnet-20241022", "temperature": 0.4},
    },
}

# Provider priority order
PROVIDER_ORDER = ["groq", "openai", "anthropic"]


def _get_api_key(provider: str) -> Optional[str]:
    """Get API key for a provider."""
    key_map = {
        "groq": "GROQ_API_KEY",
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
    }
    return os.getenv(key_map.get(provider, ""))


def _create_llm(provider: str, config: Dict[str, Any]):
    """Create an LLM instance for a provider, or None without an API key."""
    api_key = _get_api_key(provider)
    if not api_key:
        return None

    if provider == "groq":
        from langchain_groq import ChatGroq
        return ChatGroq(
            model=config["model"],
            api_key=api_key,
            temperature=config.get("temperature", 0.3),
        )
    elif provider == "openai":
        from langchain_openai import ChatOpenAI
        return ChatOpenAI(
            model=config["model"],
            api_key=api_key,
            temperature=config.get("temperature", 0.3),
        )
    elif provider == "anthropic":
        from langchain_anthropic import ChatAnthropic
        return ChatAnthropic(
            model=config["model"],
            api_key=api_key,
            temperature=config.get("temperature", 0.3),
        )

    return None


def available_providers() -> List[str]:
    """Providers with an API key configured."""
    return [p for p in PROVIDER_ORDER if _get_api_key(p)]


def invoke_with_fallback(
    messages: List[BaseMessage],
    tier: Union[str, ModelTier] = "balanced",
    max_retries: int = 3,
    retry_delay: float = 1.0
) -> str:
    """
    Invoke LLM with automatic fallback to other providers on failure.

    Args:
        messages: List of LangChain messages
        tier: Model tier to use
        max_retries: Max retries per provider (rate limits only)
        retry_delay: Delay between retries (seconds)

    Returns:
        Response content string

    Raises:
        GenerationFailed: no provider configured, or all of them failed
    """
    if isinstance(tier, str):
        tier = ModelTier(tier.lower())

    tier_config = MODEL_CONFIG.get(tier, MODEL_CONFIG[ModelTier.BALANCED])
    errors = []

    for provider in PROVIDER_ORDER:
        if provider not in tier_config:
            continue

        llm = _create_llm(provider, tier_config[provider])
        if not llm:
            continue

        for attempt in range(max_retries):
            try:
                response = llm.invoke(messages)
                return response.content

            except Exception as e:
                error_msg = str(e)
                errors.append(f"{provider}:{error_msg[:50]}")

                # Check for rate limit
                if "429" in error_msg or "rate" in error_msg.lower():
                    logger.warning(f"{provider} rate limited, waiting...")
                    time.sleep(retry_delay * (attempt + 1))
                else:
                    logger.warning(f"{provider} failed: {error_msg[:100]}")
                    break  # Don't retry for non-rate-limit errors

    if not errors:
        raise GenerationFailed("No LLM provider configured")
    raise GenerationFailed(f"All LLM providers failed: {'; '.join(errors)}")
