"""Conversation engine: drives one bounded exchange with the remote model.

Each round sends the full history plus the active tools, appends every
response item to the history, and services tool calls through the
caller-supplied handler before the next round. The first response that
carries text (or no tool calls at all) is the terminal answer; its tool
calls are still serviced first.

Drive it step-wise so cancellation can be checked between rounds::

    async for _ in conversation.steps():
        ...  # suspension point before each network round

or with ``await conversation.step()`` / ``await conversation.run()``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pipeline_agent.agent.cancellation import CancelSignal
from pipeline_agent.agent.conversation import Message, to_llm_messages
from pipeline_agent.config import DEFAULT_MAX_ROUNDS
from pipeline_agent.errors import ConversationCompleteError, ExchangeCancelledError, UnknownToolError
from pipeline_agent.llm.provider import LLMProvider, ModelRequest, ModelResponse, TokenUsage, Tool, ToolUse
from pipeline_agent.llm.usage import UsageGate
from pipeline_agent.utils import maybe_await

logger = logging.getLogger(__name__)

ToolHandler = Callable[[ToolUse, list[Message], CancelSignal | None], Any]
MessageObserver = Callable[[list[Message]], "Awaitable[None] | None"]

TOOL_ERROR_PREFIX = "Error while executing function: "


@dataclass
class ToolSet:
    """Tool declarations plus the handler servicing their calls."""

    tools: list[Tool] = field(default_factory=list)
    handle: ToolHandler | None = None


@dataclass
class ModelSettings:
    model: str
    temperature: float | None = None
    response_format: dict[str, Any] | None = None
    max_rounds: int = DEFAULT_MAX_ROUNDS


def _json_default(value: Any) -> Any:
    if hasattr(value, "to_python"):
        return value.to_python()
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_tool_result(result: Any) -> str:
    return json.dumps(result if result is not None else {}, default=_json_default)


def _tool_call_to_dict(call: ToolUse) -> dict[str, Any]:
    arguments = call.input["_raw"] if call.has_truncated_arguments else json.dumps(call.input)
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": arguments},
    }


class Conversation:
    """One bounded exchange between the agent and the remote model.

    History is append-only. Tool handler failures are absorbed into the
    history as error results; transport errors and cancellation propagate.
    """

    def __init__(
        self,
        provider: LLMProvider,
        prompt: list[Message],
        tools: ToolSet | None = None,
        settings: ModelSettings | None = None,
        *,
        cancel: CancelSignal | None = None,
        on_messages: MessageObserver | None = None,
        usage_gate: UsageGate | None = None,
        source: str = "conversation",
    ):
        self.provider = provider
        self.settings = settings or ModelSettings(model=getattr(provider, "model", ""))
        self.cancel = cancel
        self.usage_gate = usage_gate
        self.source = source
        self._tools = tools or ToolSet()
        self._on_messages = on_messages
        self._history: list[Message] = []
        self._next_seq = 0
        for message in prompt:
            self._history.append(message)
            self._next_seq = max(self._next_seq, message.seq + 1)
        self._output: str | None = None
        self._halted = False
        self.stop_reason: str | None = None
        self._rounds = 0
        self._usage: TokenUsage | None = None
        self._total_usage = TokenUsage()
        self._pending: set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def history(self) -> list[Message]:
        return list(self._history)

    @property
    def output(self) -> str | None:
        return self._output

    @property
    def usage(self) -> TokenUsage | None:
        """Counters of the most recent response."""
        return self._usage

    @property
    def total_usage(self) -> TokenUsage:
        return self._total_usage

    @property
    def rounds(self) -> int:
        return self._rounds

    @property
    def halted(self) -> bool:
        """True when the exchange stopped without a terminal answer (veto, round bound)."""
        return self._halted

    @property
    def is_complete(self) -> bool:
        return self._output is not None or self._halted

    @property
    def tools(self) -> list[Tool]:
        return list(self._tools.tools)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, message: Message) -> Message:
        """Append a caller-injected message (diagnostics, instructions)."""
        message = dataclasses.replace(message, seq=self._next_seq)
        self._append(message)
        return message

    def clear_tools(self) -> None:
        """Stop offering tools so the next response must be a terminal answer."""
        self._tools = ToolSet(tools=[], handle=self._tools.handle)

    def clear_output(self) -> None:
        """Forget the terminal answer so the engine runs at least one more round."""
        self._output = None

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    async def steps(self) -> AsyncIterator[int]:
        """Yield before each network round until the exchange is terminal."""
        if self.is_complete:
            raise ConversationCompleteError()
        while not self.is_complete:
            self._check_cancel()
            yield self._rounds
            self._check_cancel()
            await self._round()

    async def step(self) -> bool:
        """Run exactly one round. Returns True once the exchange is terminal."""
        if self.is_complete:
            raise ConversationCompleteError()
        self._check_cancel()
        await self._round()
        return self.is_complete

    async def run(self) -> str | None:
        async for _ in self.steps():
            pass
        return self._output

    async def flush(self) -> None:
        """Wait for outstanding observer notifications."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_cancel(self) -> None:
        if self.cancel is not None:
            self.cancel.raise_if_cancelled()

    def _halt(self, reason: str) -> None:
        self._halted = True
        self.stop_reason = reason

    def _append(self, message: Message) -> None:
        self._history.append(message)
        self._next_seq = message.seq + 1
        self._notify()

    def _notify(self) -> None:
        if self._on_messages is None:
            return
        try:
            result = self._on_messages(list(self._history))
        except Exception as e:
            logger.error(f"Message observer error: {e}")
            return
        if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._observer_done)

    def _observer_done(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Message observer error: {task.exception()}")

    async def _round(self) -> None:
        model = self.settings.model
        if self._rounds >= self.settings.max_rounds:
            logger.warning(
                "Conversation reached %d rounds without a terminal answer",
                self._rounds,
                extra={"event": "max_rounds", "model": model},
            )
            self._halt("max-rounds")
            return
        self._rounds += 1

        request = ModelRequest(
            model=model,
            messages=to_llm_messages(self._history),
            tools=list(self._tools.tools),
            response_format=self.settings.response_format,
            temperature=self.settings.temperature,
        )

        started_at = time.time()
        if self.usage_gate is not None:
            event, proceed = await self.usage_gate.emit_start_checked(
                self.source, model, {"round": self._rounds}
            )
            if not proceed:
                self._halt("vetoed")
                return
            started_at = event.started_at

        try:
            response = await self._send(request)
        except Exception:
            if self.usage_gate is not None:
                await self.usage_gate.emit_end_checked(
                    self.source, model, started_at, metadata={"round": self._rounds, "error": True}
                )
            raise

        self._usage = response.usage
        if response.usage is not None:
            self._total_usage = self._total_usage + response.usage
        logger.debug(
            "Round %d: %d tool calls",
            self._rounds,
            len(response.tool_calls),
            extra={
                "model": response.model or model,
                "tokens_used": response.usage.total_tokens if response.usage else None,
                "latency_ms": int((time.time() - started_at) * 1000),
            },
        )

        proceed = True
        if self.usage_gate is not None:
            _, proceed = await self.usage_gate.emit_end_checked(
                self.source, model, started_at, usage=response.usage, metadata={"round": self._rounds}
            )

        self._record_response(response)
        if not proceed:
            self._halt("vetoed")
            return

        # every call gets its result, even when the response also ends the exchange
        for call in response.tool_calls:
            await self._service(call)
            self._check_cancel()

        if response.is_terminal:
            self._output = response.text

    def _record_response(self, response: ModelResponse) -> None:
        tool_calls = [_tool_call_to_dict(c) for c in response.tool_calls] or None
        self._append(
            Message(
                seq=self._next_seq,
                role="assistant",
                content=response.text,
                tool_calls=tool_calls,
            )
        )

    async def _send(self, request: ModelRequest) -> ModelResponse:
        try:
            return await self._request(request)
        except ExchangeCancelledError:
            raise
        except Exception as e:
            parameter = self.provider.unsupported_parameter(e, request)
            if parameter is None:
                raise
            logger.warning(
                "Model %s rejected parameter %r; retrying without it",
                request.model,
                parameter,
                extra={"model": request.model},
            )
            return await self._request(request.without(parameter))

    async def _request(self, request: ModelRequest) -> ModelResponse:
        if self.cancel is None:
            return await self.provider.respond(request)

        request_task = asyncio.ensure_future(self.provider.respond(request))
        cancel_task = asyncio.ensure_future(self.cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {request_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (request_task, cancel_task):
                if not task.done():
                    task.cancel()
        if cancel_task in done:
            raise ExchangeCancelledError(self.cancel.reason)
        return request_task.result()

    async def _service(self, call: ToolUse) -> None:
        try:
            if self._tools.handle is None:
                raise UnknownToolError(call.name)
            result = await maybe_await(self._tools.handle(call, self.history, self.cancel))
            content = serialize_tool_result(result)
            is_error = False
        except ExchangeCancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Tool %s failed: %s", call.name, e, extra={"tool_name": call.name}
            )
            content = f"{TOOL_ERROR_PREFIX}{e}"
            is_error = True

        self._append(
            Message(
                seq=self._next_seq,
                role="tool",
                content=content,
                tool_use_id=call.id,
                is_error=is_error,
            )
        )
