"""Rationale generator, Prophet chat and the provider chain, with fake models."""

import pytest

from agents.llm_provider import available_providers, invoke_with_fallback
from agents.prophet_chat import FALLBACK_ANSWER, ProphetChat
from agents.rationale import ProphetRationaleGenerator, SIMULATE_NOTE
from market.errors import GenerationFailed


@pytest.fixture
def no_provider_keys(monkeypatch):
    for key in ("GROQ_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(key, raising=False)


# ==================== RATIONALE ====================

def test_rationale_parses_bullets_from_fenced_json():
    prompts = []

    def fake_llm(messages):
        prompts.append(messages)
        return '```json\n{"bullets": ["RSI cooling", "Volume up 40%", "  "]}\n```'

    bullets = ProphetRationaleGenerator(llm_invoke=fake_llm).generate("TOKEN", "PEPE", "UP", 5.0, "simulate")

    assert bullets == ["RSI cooling", "Volume up 40%"]
    assert "PEPE (TOKEN) will move UP by 5%" in prompts[0][1].content
    assert SIMULATE_NOTE in prompts[0][1].content


def test_rationale_caps_bullet_count():
    reply = '{"bullets": ["a", "b", "c", "d", "e", "f", "g", "h"]}'
    bullets = ProphetRationaleGenerator(llm_invoke=lambda m: reply).generate("NFT", "Milady", "DOWN", 3.0, "live")
    assert len(bullets) == 6


@pytest.mark.parametrize("reply", ["no json here", '{"bullets": []}', '{"other": 1}'])
def test_rationale_bad_replies_raise(reply):
    generator = ProphetRationaleGenerator(llm_invoke=lambda m: reply)
    with pytest.raises(GenerationFailed):
        generator.generate("TOKEN", "PEPE", "UP", 5.0, "simulate")


def test_rationale_model_error_raises_generation_failed():
    def broken(messages):
        raise RuntimeError("timeout")

    with pytest.raises(GenerationFailed):
        ProphetRationaleGenerator(llm_invoke=broken).generate("TOKEN", "PEPE", "UP", 5.0, "simulate")


# ==================== CHAT ====================

def test_chat_passes_market_context():
    seen = []

    def fake_llm(messages):
        seen.append(messages[-1].content)
        return "  The call stands.  "

    answer = ProphetChat(llm_invoke=fake_llm).answer("Why UP?", {"market": {"asset_name": "PEPE"}})

    assert answer == "The call stands."
    assert "Why UP?" in seen[0]
    assert "PEPE" in seen[0]


def test_chat_falls_back_on_failure():
    def broken(messages):
        raise GenerationFailed("down")

    assert ProphetChat(llm_invoke=broken).answer("Hello?") == FALLBACK_ANSWER
    assert ProphetChat(llm_invoke=lambda m: "").answer("Hello?") == FALLBACK_ANSWER


# ==================== PROVIDERS ====================

def test_no_provider_configured(no_provider_keys):
    assert available_providers() == []
    with pytest.raises(GenerationFailed):
        invoke_with_fallback([], tier="fast")
