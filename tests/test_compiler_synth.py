"""Tests for the compile-stage prompt, the intent compiler and the insight synthesizer."""

import json

import pytest

from coinquery.errors import CompileFault, SynthesisFault, ValidationFault
from coinquery.explain.synthesizer import InsightSynthesizer, build_user_message
from coinquery.planning.compiler import IntentCompiler, build_system_prompt


# ---------------------------------------------------------------------------
# Compile prompt
# ---------------------------------------------------------------------------


def test_system_prompt_documents_every_capability(fake_registry):
    prompt = build_system_prompt(fake_registry, ["0xabc", "0xdef"])

    for capability in fake_registry:
        assert capability.qualified_name in prompt
    assert "0xabc, 0xdef" in prompt
    assert "portfolioAddresses" in prompt
    assert "TIME_PERIODS" in prompt
    assert "return data" in prompt


class TestIntentCompiler:
    @pytest.mark.asyncio
    async def test_returns_raw_text(self, fake_registry, config, strategy, scripted_router):
        strategy.replies.append("<think>hmm</think>data = {}\nreturn data")
        compiler = IntentCompiler(fake_registry, config, scripted_router)

        text = await compiler.compile("price of bitcoin?")

        assert text == "<think>hmm</think>data = {}\nreturn data"
        call = strategy.calls[0]
        assert call["route"] == "o3-mini"
        assert call["max_tokens"] == config.routes["o3-mini"].compile_max_tokens
        assert call["messages"][0]["content"] == compiler.system_prompt
        assert call["messages"][1] == {"role": "user", "content": "price of bitcoin?"}

    @pytest.mark.asyncio
    async def test_empty_reply_is_a_compile_fault(self, fake_registry, config, strategy, scripted_router):
        strategy.replies.append("   ")
        compiler = IntentCompiler(fake_registry, config, scripted_router)

        with pytest.raises(CompileFault, match="no program text"):
            await compiler.compile("price of bitcoin?")

    @pytest.mark.asyncio
    async def test_model_failure_is_a_compile_fault(self, fake_registry, config, strategy, scripted_router):
        strategy.replies.append(RuntimeError("upstream 502"))
        compiler = IntentCompiler(fake_registry, config, scripted_router)

        with pytest.raises(CompileFault, match="Failed to get AI response") as excinfo:
            await compiler.compile("price of bitcoin?")
        assert excinfo.value.details == {"model": "o3-mini"}

    @pytest.mark.asyncio
    async def test_unknown_model_is_a_validation_fault(self, fake_registry, config, strategy, scripted_router):
        compiler = IntentCompiler(fake_registry, config, scripted_router)

        with pytest.raises(ValidationFault, match="Unsupported model: gpt-99"):
            await compiler.compile("price of bitcoin?", "gpt-99")
        assert strategy.calls == []


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------


def test_user_message_embeds_question_and_data():
    message = build_user_message("How is BTC?", {"currentPrice": "$65000.00"})

    assert message.startswith("User Question: How is BTC?\n\nAvailable Data:\n")
    assert json.dumps({"currentPrice": "$65000.00"}, indent=2) in message
    assert message.endswith("directly address the user's question.")


class TestInsightSynthesizer:
    @pytest.mark.asyncio
    async def test_uses_persona_and_synthesis_limit(self, config, strategy, scripted_router):
        strategy.replies.append("Bitcoin trades at $65,000.")
        synthesizer = InsightSynthesizer(config, scripted_router)

        text = await synthesizer.synthesize("How is BTC?", {"price": "$65000.00"}, "You are a pirate.")

        assert text == "Bitcoin trades at $65,000."
        call = strategy.calls[0]
        assert call["messages"][0] == {"role": "system", "content": "You are a pirate."}
        assert call["max_tokens"] == config.routes["o3-mini"].synthesize_max_tokens

    @pytest.mark.asyncio
    @pytest.mark.parametrize("system_prompt", [None, "", "   "])
    async def test_requires_system_prompt(self, config, strategy, scripted_router, system_prompt):
        synthesizer = InsightSynthesizer(config, scripted_router)

        with pytest.raises(ValidationFault, match="System prompt is required"):
            await synthesizer.synthesize("How is BTC?", {}, system_prompt)
        assert strategy.calls == []

    @pytest.mark.asyncio
    async def test_model_failure_is_a_synthesis_fault(self, config, strategy, scripted_router):
        strategy.replies.append(TimeoutError("read timed out"))
        synthesizer = InsightSynthesizer(config, scripted_router)

        with pytest.raises(SynthesisFault, match="Failed to analyze data"):
            await synthesizer.synthesize("How is BTC?", {}, "persona")
