"""LiteLLM-backed provider for any OpenAI-compatible chat-completion model."""

import json
import logging
from typing import Any

import litellm

from pipeline_agent.llm.provider import (
    DEGRADABLE_PARAMETERS,
    LLMProvider,
    ModelRequest,
    ModelResponse,
    TokenUsage,
    Tool,
    ToolUse,
)

logger = logging.getLogger(__name__)


def _tool_to_dict(tool: Tool) -> dict[str, Any]:
    function: dict[str, Any] = {
        "name": tool.name,
        "description": tool.description,
        "parameters": tool.parameters or {"type": "object", "properties": {}},
    }
    if tool.strict:
        function["strict"] = True
    return {"type": "function", "function": function}


def _decode_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return {"_raw": raw}
    return decoded if isinstance(decoded, dict) else {"_raw": raw}


class LiteLLMProvider(LLMProvider):
    """
    Provider over ``litellm.acompletion``.

    Model strings follow LiteLLM conventions ("openai/gpt-4o-mini",
    "anthropic/claude-sonnet-4-20250514", ...).
    """

    def __init__(
        self,
        model: str = "openai/gpt-4o-mini",
        api_key: str | None = None,
        api_base: str | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout
        self.extra_kwargs = kwargs

    def _build_kwargs(self, request: ModelRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model or self.model,
            "messages": request.messages,
            **self.extra_kwargs,
            **request.extra_params,
        }
        if request.tools:
            kwargs["tools"] = [_tool_to_dict(t) for t in request.tools]
            kwargs["tool_choice"] = "auto"
        if request.response_format is not None:
            kwargs["response_format"] = request.response_format
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        return kwargs

    async def respond(self, request: ModelRequest) -> ModelResponse:
        kwargs = self._build_kwargs(request)
        logger.debug(
            "Sending request to %s (%d messages, %d tools)",
            kwargs["model"],
            len(request.messages),
            len(request.tools),
        )
        response = await litellm.acompletion(**kwargs)
        return self._parse_response(response, kwargs["model"])

    def _parse_response(self, response: Any, model: str) -> ModelResponse:
        choice = response.choices[0]
        message = choice.message

        tool_calls = [
            ToolUse(
                id=tc.id,
                name=tc.function.name,
                input=_decode_arguments(tc.function.arguments),
            )
            for tc in (getattr(message, "tool_calls", None) or [])
        ]

        usage = None
        raw_usage = getattr(response, "usage", None)
        if raw_usage is not None:
            usage = TokenUsage(
                input_tokens=getattr(raw_usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(raw_usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(raw_usage, "total_tokens", 0) or 0,
            )

        return ModelResponse(
            text=message.content or "",
            tool_calls=tool_calls,
            usage=usage,
            model=getattr(response, "model", None) or model,
            stop_reason=getattr(choice, "finish_reason", "") or "",
            raw_response=response,
        )

    def unsupported_parameter(self, error: BaseException, request: ModelRequest) -> str | None:
        # litellm raises this before any request is sent, without a status
        if isinstance(error, litellm.UnsupportedParamsError):
            message = str(error).lower()
            for parameter in DEGRADABLE_PARAMETERS:
                if parameter in message and request.has_parameter(parameter):
                    return parameter
            return None
        return super().unsupported_parameter(error, request)
