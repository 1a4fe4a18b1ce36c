"""Tests for the retry-until-valid workflow."""

from __future__ import annotations

import json

import pytest
from mock_llm import GOTO_PIPELINE, Script, ScriptedProvider, pipeline_text

from pipeline_agent.agent.cancellation import CancelSignal
from pipeline_agent.agent.conversation import Message
from pipeline_agent.agent.engine import Conversation, ModelSettings
from pipeline_agent.agent.retry import generate_until_valid
from pipeline_agent.errors import ArtifactCompileError, ExchangeCancelledError
from pipeline_agent.llm.usage import UsageGate
from pipeline_agent.pipeline.compiler import StepGraphCompiler
from pipeline_agent.pipeline.schema import SchemaValidator

INVALID_SCHEMA = pipeline_text({"goto1": {"node": "page::goto", "inputs": {}, "outputs": {}, "dependsOn": []}})
INVALID_COMPILE = pipeline_text(
    {
        "goto1": {
            "node": "page::goto",
            "inputs": {"url": {"type": "constant", "value": "https://example.com"}},
            "outputs": {},
            "dependsOn": ["goto1"],
        }
    }
)


def _conversation(scripts: list[Script], **kwargs) -> tuple[Conversation, ScriptedProvider]:
    provider = ScriptedProvider(scripts)
    prompt = [Message(seq=0, role="user", content="go to example.com")]
    return Conversation(provider, prompt, settings=ModelSettings(model="m"), **kwargs), provider


async def _generate(conversation: Conversation, max_retries: int = 3, **kwargs):
    return await generate_until_valid(
        conversation,
        validator=SchemaValidator(),
        compiler=StepGraphCompiler(),
        max_retries=max_retries,
        **kwargs,
    )


def _diagnostics(history: list[Message]) -> list[dict]:
    return [json.loads(m.content) for m in history if m.role == "system"]


# ===========================================================================
# Success paths
# ===========================================================================


class TestSuccess:
    @pytest.mark.asyncio
    async def test_first_output_valid(self):
        conversation, provider = _conversation([Script(text=pipeline_text(GOTO_PIPELINE))])

        result = await _generate(conversation)

        assert result.ok
        assert result.attempts == 1
        assert result.raw == GOTO_PIPELINE
        assert result.pipeline.order == ["goto1"]
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_each_failure_kind_injects_its_diagnostic(self):
        conversation, provider = _conversation(
            [
                Script(text="this is not json"),
                Script(text=INVALID_SCHEMA),
                Script(text=INVALID_COMPILE),
                Script(text=pipeline_text(GOTO_PIPELINE)),
            ]
        )

        result = await _generate(conversation, max_retries=5)

        assert result.ok
        assert result.attempts == 4
        diagnostics = _diagnostics(result.history)
        assert [d["type"] for d in diagnostics] == [
            "parse-error",
            "validate-error",
            "pipeline-compile-errors",
        ]
        assert diagnostics[0]["message"] == "Failed to parse the JSON response"
        assert diagnostics[1]["errors"]
        assert "cannot depend on itself" in diagnostics[2]["errors"][0]

    @pytest.mark.asyncio
    async def test_diagnostic_is_sent_to_the_model(self):
        conversation, provider = _conversation(
            [Script(text="oops"), Script(text=pipeline_text(GOTO_PIPELINE))]
        )
        await _generate(conversation)

        last_sent = provider.requests[1].messages[-1]
        assert last_sent["role"] == "system"
        assert json.loads(last_sent["content"])["type"] == "parse-error"


# ===========================================================================
# Retry ceiling
# ===========================================================================


class TestCeiling:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("invalid_outputs,ceiling", [(0, 3), (1, 3), (2, 3), (3, 3), (4, 3), (1, 1), (0, 0)])
    async def test_succeeds_iff_invalid_outputs_below_ceiling(self, invalid_outputs, ceiling):
        scripts = [Script(text="not json") for _ in range(invalid_outputs)]
        scripts.append(Script(text=pipeline_text(GOTO_PIPELINE)))
        conversation, _ = _conversation(scripts)

        result = await _generate(conversation, max_retries=ceiling)

        if invalid_outputs < ceiling:
            assert result.ok
            assert result.attempts == invalid_outputs + 1
        else:
            assert not result.ok
            assert result.pipeline is None
            assert result.attempts == ceiling

    @pytest.mark.asyncio
    async def test_exhaustion_returns_history_without_raising(self):
        conversation, _ = _conversation([Script(text=INVALID_COMPILE) for _ in range(2)])

        result = await _generate(conversation, max_retries=2)

        assert not result.ok
        assert isinstance(result.last_error, ArtifactCompileError)
        assert [m.role for m in result.history] == ["user", "assistant", "system", "assistant"]


# ===========================================================================
# Stop conditions
# ===========================================================================


class TestStopConditions:
    @pytest.mark.asyncio
    async def test_halted_conversation_yields_no_result(self):
        gate = UsageGate([lambda event: False])
        conversation, provider = _conversation([Script(text="never")], usage_gate=gate)

        result = await _generate(conversation)

        assert not result.ok
        assert result.attempts == 0
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_should_stop_short_circuits(self):
        conversation, _ = _conversation([Script(text="whatever")])
        result = await _generate(conversation, should_stop=lambda: True)
        assert not result.ok
        assert result.attempts == 0

    @pytest.mark.asyncio
    async def test_cancellation_during_retry_propagates(self):
        cancel = CancelSignal()
        conversation, provider = _conversation([Script(text="bad")], cancel=cancel)
        await conversation.run()
        cancel.cancel()

        with pytest.raises(ExchangeCancelledError):
            await _generate(conversation)
        assert provider.call_count == 1
