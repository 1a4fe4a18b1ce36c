"""Tests for the Conversation engine: rounds, tool servicing, cancellation, degrade-retry."""

from __future__ import annotations

import asyncio
import json

import pytest
from mock_llm import Script, ScriptedProvider

from pipeline_agent.agent.cancellation import CancelSignal
from pipeline_agent.agent.conversation import Message
from pipeline_agent.agent.engine import Conversation, ModelSettings, ToolSet
from pipeline_agent.errors import ConversationCompleteError, ExchangeCancelledError
from pipeline_agent.llm.provider import ModelRequest, Tool
from pipeline_agent.llm.usage import UsageGate

ECHO_TOOL = Tool(name="echo", description="Echo the input", parameters={"type": "object"})


def _prompt() -> list[Message]:
    return [
        Message(seq=0, role="system", content="You are a test agent."),
        Message(seq=1, role="user", content="Do the thing"),
    ]


def _conversation(provider, handle=None, **kwargs) -> Conversation:
    settings = kwargs.pop("settings", ModelSettings(model="mock-scripted", temperature=0.2))
    return Conversation(
        provider,
        _prompt(),
        ToolSet(tools=[ECHO_TOOL], handle=handle),
        settings,
        **kwargs,
    )


# ===========================================================================
# Rounds and termination
# ===========================================================================


class TestRounds:
    @pytest.mark.asyncio
    async def test_text_response_is_terminal(self):
        provider = ScriptedProvider([Script(text="done")])
        conversation = _conversation(provider)

        output = await conversation.run()

        assert output == "done"
        assert conversation.is_complete
        assert conversation.rounds == 1
        assert [m.role for m in conversation.history] == ["system", "user", "assistant"]

    @pytest.mark.asyncio
    async def test_text_with_tool_calls_ends_after_servicing_them(self):
        calls = []

        def handle(call, history, cancel):
            calls.append(call.id)
            return {"ok": True}

        provider = ScriptedProvider(
            [
                Script(text="Here is my answer", tool_calls=[{"name": "echo", "id": "g1"}]),
                Script(text="second"),
            ]
        )
        conversation = _conversation(provider, handle)

        output = await conversation.run()

        assert output == "Here is my answer"
        assert provider.call_count == 1
        assert calls == ["g1"]
        assert [m.role for m in conversation.history] == ["system", "user", "assistant", "tool"]
        assert conversation.history[3].tool_use_id == "g1"

    @pytest.mark.asyncio
    async def test_request_carries_full_history_and_tools(self):
        provider = ScriptedProvider([Script(text="done")])
        await _conversation(provider).run()

        request = provider.requests[0]
        assert request.model == "mock-scripted"
        assert request.temperature == 0.2
        assert [m["role"] for m in request.messages] == ["system", "user"]
        assert [t.name for t in request.tools] == ["echo"]

    @pytest.mark.asyncio
    async def test_tool_call_then_text(self):
        seen = []

        async def handle(call, history, cancel):
            seen.append((call.name, call.input, len(history)))
            return {"echoed": call.input["value"]}

        provider = ScriptedProvider(
            [
                Script(tool_calls=[{"name": "echo", "input": {"value": "hi"}, "id": "c1"}]),
                Script(text="finished"),
            ]
        )
        conversation = _conversation(provider, handle)

        assert await conversation.run() == "finished"
        assert seen == [("echo", {"value": "hi"}, 3)]

        tool_msg = conversation.history[3]
        assert tool_msg.role == "tool"
        assert tool_msg.tool_use_id == "c1"
        assert json.loads(tool_msg.content) == {"echoed": "hi"}
        # Second request sees the call/result pair
        second = provider.requests[1].messages
        assert second[2]["tool_calls"][0]["id"] == "c1"
        assert second[3] == {"role": "tool", "tool_call_id": "c1", "content": tool_msg.content}

    @pytest.mark.asyncio
    async def test_none_result_serializes_as_empty_object(self):
        provider = ScriptedProvider(
            [Script(tool_calls=[{"name": "echo", "input": {}}]), Script(text="ok")]
        )
        conversation = _conversation(provider, lambda call, history, cancel: None)
        await conversation.run()
        assert conversation.history[3].content == "{}"

    @pytest.mark.asyncio
    async def test_tool_results_appended_in_request_order(self):
        async def handle(call, history, cancel):
            # Later calls finish faster; order must still follow the request
            await asyncio.sleep(0.01 if call.id == "a" else 0)
            return call.id

        provider = ScriptedProvider(
            [
                Script(
                    tool_calls=[
                        {"name": "echo", "id": "a"},
                        {"name": "echo", "id": "b"},
                        {"name": "echo", "id": "c"},
                    ]
                ),
                Script(text="done"),
            ]
        )
        conversation = _conversation(provider, handle)
        await conversation.run()

        tool_ids = [m.tool_use_id for m in conversation.history if m.role == "tool"]
        assert tool_ids == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_driving_a_complete_conversation_is_misuse(self):
        provider = ScriptedProvider([Script(text="done")])
        conversation = _conversation(provider)
        await conversation.run()

        with pytest.raises(ConversationCompleteError):
            await conversation.run()
        with pytest.raises(ConversationCompleteError):
            await conversation.step()

    @pytest.mark.asyncio
    async def test_step_runs_one_round(self):
        provider = ScriptedProvider(
            [Script(tool_calls=[{"name": "echo", "input": {}}]), Script(text="done")]
        )
        conversation = _conversation(provider, lambda call, history, cancel: {"ok": True})

        assert await conversation.step() is False
        assert provider.call_count == 1
        assert await conversation.step() is True
        assert conversation.output == "done"

    @pytest.mark.asyncio
    async def test_steps_yields_before_each_round(self):
        provider = ScriptedProvider(
            [Script(tool_calls=[{"name": "echo", "input": {}}]), Script(text="done")]
        )
        conversation = _conversation(provider, lambda call, history, cancel: {})

        calls_at_yield = []
        async for _ in conversation.steps():
            calls_at_yield.append(provider.call_count)

        assert calls_at_yield == [0, 1]

    @pytest.mark.asyncio
    async def test_max_rounds_halts_without_output(self):
        provider = ScriptedProvider(
            [Script(tool_calls=[{"name": "echo", "input": {}}]) for _ in range(3)]
        )
        conversation = _conversation(
            provider,
            lambda call, history, cancel: {},
            settings=ModelSettings(model="m", max_rounds=2),
        )

        assert await conversation.run() is None
        assert conversation.halted
        assert conversation.stop_reason == "max-rounds"
        assert provider.call_count == 2

    @pytest.mark.asyncio
    async def test_usage_is_accumulated(self):
        provider = ScriptedProvider(
            [Script(tool_calls=[{"name": "echo"}], tokens=5), Script(text="x", tokens=7)]
        )
        conversation = _conversation(provider, lambda call, history, cancel: {})
        await conversation.run()

        assert conversation.usage.total_tokens == 8
        assert conversation.total_usage.total_tokens == 6 + 8


# ===========================================================================
# Tool failures
# ===========================================================================


class TestToolFailures:
    @pytest.mark.asyncio
    async def test_handler_error_is_absorbed_into_history(self):
        def handle(call, history, cancel):
            raise ValueError("boom")

        provider = ScriptedProvider(
            [Script(tool_calls=[{"name": "echo", "id": "c1"}]), Script(text="recovered")]
        )
        conversation = _conversation(provider, handle)

        assert await conversation.run() == "recovered"
        tool_msg = conversation.history[3]
        assert tool_msg.is_error
        assert tool_msg.content == "Error while executing function: boom"

    @pytest.mark.asyncio
    async def test_missing_handler_reports_invalid_function(self):
        provider = ScriptedProvider([Script(tool_calls=[{"name": "echo"}]), Script(text="ok")])
        conversation = _conversation(provider, handle=None)
        await conversation.run()
        assert conversation.history[3].content == "Error while executing function: Invalid function name: echo"

    @pytest.mark.asyncio
    async def test_unserializable_result_becomes_error(self):
        provider = ScriptedProvider([Script(tool_calls=[{"name": "echo"}]), Script(text="ok")])
        conversation = _conversation(provider, lambda call, history, cancel: object())
        await conversation.run()
        assert conversation.history[3].is_error

    @pytest.mark.asyncio
    async def test_cancellation_from_handler_propagates(self):
        def handle(call, history, cancel):
            raise ExchangeCancelledError("stop")

        provider = ScriptedProvider([Script(tool_calls=[{"name": "echo"}]), Script(text="never")])
        conversation = _conversation(provider, handle)

        with pytest.raises(ExchangeCancelledError):
            await conversation.run()
        assert provider.call_count == 1


# ===========================================================================
# Cancellation
# ===========================================================================


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_first_round_leaves_history_untouched(self):
        provider = ScriptedProvider([Script(text="never")])
        cancel = CancelSignal()
        cancel.cancel("user aborted")
        conversation = _conversation(provider, cancel=cancel)
        before = conversation.history

        with pytest.raises(ExchangeCancelledError) as exc_info:
            await conversation.run()

        assert exc_info.value.reason == "user aborted"
        assert provider.call_count == 0
        assert conversation.history == before

    @pytest.mark.asyncio
    async def test_cancel_is_distinct_from_transport_errors(self):
        assert not issubclass(ExchangeCancelledError, ConnectionError)
        assert str(ExchangeCancelledError()) == "Conversation aborted"

    @pytest.mark.asyncio
    async def test_cancel_during_inflight_request(self):
        cancel = CancelSignal()

        class SlowProvider(ScriptedProvider):
            async def respond(self, request: ModelRequest):
                self.requests.append(request)
                await asyncio.sleep(10)

        provider = SlowProvider()
        conversation = _conversation(provider, cancel=cancel)

        async def cancel_soon():
            await asyncio.sleep(0.01)
            cancel.cancel()

        with pytest.raises(ExchangeCancelledError):
            await asyncio.gather(conversation.run(), cancel_soon())
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_cancel_observed_after_tool_call(self):
        cancel = CancelSignal()

        def handle(call, history, signal):
            signal.cancel("mid-tool")
            return {"ok": True}

        provider = ScriptedProvider([Script(tool_calls=[{"name": "echo"}]), Script(text="never")])
        conversation = _conversation(provider, handle, cancel=cancel)

        with pytest.raises(ExchangeCancelledError):
            await conversation.run()
        assert provider.call_count == 1


# ===========================================================================
# Degrade-retry
# ===========================================================================


class TestDegradeRetry:
    @pytest.mark.asyncio
    async def test_unsupported_temperature_retries_once_without_it(self):
        provider = ScriptedProvider(
            [
                Script(error=ValueError("Unsupported value: 'temperature' is not supported with this model.")),
                Script(text="ok"),
            ]
        )
        conversation = _conversation(provider)

        assert await conversation.run() == "ok"
        assert provider.requests[0].temperature == 0.2
        assert provider.requests[1].temperature is None

    @pytest.mark.asyncio
    async def test_degrade_retry_happens_only_once(self):
        error = ValueError("'temperature' is not supported with this model")
        provider = ScriptedProvider([Script(error=error), Script(error=error)])
        conversation = _conversation(provider)

        with pytest.raises(ValueError):
            await conversation.run()
        assert provider.call_count == 2

    @pytest.mark.asyncio
    async def test_other_transport_errors_propagate_unmodified(self):
        error = ConnectionError("network down")
        provider = ScriptedProvider([Script(error=error)])
        conversation = _conversation(provider)

        with pytest.raises(ConnectionError) as exc_info:
            await conversation.run()
        assert exc_info.value is error
        assert provider.call_count == 1


# ===========================================================================
# Mutation and observers
# ===========================================================================


class TestMutation:
    @pytest.mark.asyncio
    async def test_clear_tools_sends_no_tools(self):
        provider = ScriptedProvider([Script(text="first"), Script(text="second")])
        conversation = _conversation(provider)
        await conversation.run()

        conversation.clear_tools()
        conversation.clear_output()
        assert await conversation.run() == "second"
        assert provider.requests[1].tools == []

    @pytest.mark.asyncio
    async def test_clear_output_forces_another_round(self):
        provider = ScriptedProvider([Script(text="bad"), Script(text="good")])
        conversation = _conversation(provider)
        await conversation.run()

        conversation.add(Message(seq=0, role="system", content="try again"))
        conversation.clear_output()
        assert await conversation.run() == "good"
        assert provider.requests[1].messages[-1] == {"role": "system", "content": "try again"}

    @pytest.mark.asyncio
    async def test_add_assigns_sequence_numbers(self):
        conversation = _conversation(ScriptedProvider())
        added = conversation.add(Message(seq=99, role="user", content="more"))
        assert added.seq == 2
        assert [m.seq for m in conversation.history] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_orphaned_tool_calls_are_repaired_on_the_wire(self):
        prompt = _prompt() + [
            Message(
                seq=2,
                role="assistant",
                content="",
                tool_calls=[{"id": "lost", "type": "function", "function": {"name": "echo", "arguments": "{}"}}],
            ),
            Message(seq=3, role="user", content="continue"),
        ]
        provider = ScriptedProvider([Script(text="ok")])
        await Conversation(provider, prompt, settings=ModelSettings(model="m")).run()

        messages = provider.requests[0].messages
        assert messages[3]["role"] == "tool"
        assert messages[3]["tool_call_id"] == "lost"
        assert messages[4]["content"] == "continue"

    @pytest.mark.asyncio
    async def test_sync_observer_sees_every_append(self):
        sizes = []
        provider = ScriptedProvider([Script(tool_calls=[{"name": "echo"}]), Script(text="done")])
        conversation = _conversation(
            provider,
            lambda call, history, cancel: {},
            on_messages=lambda history: sizes.append(len(history)),
        )
        await conversation.run()
        assert sizes == [3, 4, 5]

    @pytest.mark.asyncio
    async def test_async_observer_is_fire_and_continue(self):
        release = asyncio.Event()
        seen = []

        async def observer(history):
            await release.wait()
            seen.append(len(history))

        provider = ScriptedProvider([Script(text="done")])
        conversation = _conversation(provider, on_messages=observer)

        await conversation.run()
        assert seen == []

        release.set()
        await conversation.flush()
        assert seen == [3]

    @pytest.mark.asyncio
    async def test_observer_errors_do_not_stop_the_exchange(self):
        def observer(history):
            raise RuntimeError("observer broke")

        provider = ScriptedProvider([Script(text="done")])
        conversation = _conversation(provider, on_messages=observer)
        assert await conversation.run() == "done"


# ===========================================================================
# Usage gate
# ===========================================================================


class TestUsageGateIntegration:
    @pytest.mark.asyncio
    async def test_start_veto_stops_before_request(self):
        gate = UsageGate([lambda event: event.phase != "start"])
        provider = ScriptedProvider([Script(text="never")])
        conversation = _conversation(provider, usage_gate=gate)

        assert await conversation.run() is None
        assert conversation.halted
        assert conversation.stop_reason == "vetoed"
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_end_veto_records_response_but_skips_tools(self):
        handled = []
        gate = UsageGate([lambda event: event.phase != "end"])
        provider = ScriptedProvider([Script(tool_calls=[{"name": "echo"}])])
        conversation = _conversation(
            provider, lambda call, history, cancel: handled.append(call), usage_gate=gate
        )

        await conversation.run()

        assert conversation.stop_reason == "vetoed"
        assert handled == []
        assert conversation.history[-1].role == "assistant"

    @pytest.mark.asyncio
    async def test_events_bracket_each_request(self):
        events = []
        gate = UsageGate([events.append])
        provider = ScriptedProvider([Script(text="done", tokens=4)])
        await _conversation(provider, usage_gate=gate).run()

        assert [e.phase for e in events] == ["start", "end"]
        assert events[1].usage.total_tokens == 5
        assert events[1].duration_ms is not None

    @pytest.mark.asyncio
    async def test_failed_request_still_emits_end(self):
        events = []
        gate = UsageGate([events.append])
        provider = ScriptedProvider([Script(error=ConnectionError("down"))])

        with pytest.raises(ConnectionError):
            await _conversation(provider, usage_gate=gate).run()
        assert [e.phase for e in events] == ["start", "end"]
        assert events[1].usage is None
