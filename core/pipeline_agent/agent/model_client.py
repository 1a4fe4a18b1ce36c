"""Generic single-shot prompts against the remote model.

``ModelClient`` is the plain model API next to the agent: a caller
supplies a context object and a few messages and gets back either the
model's text or a JSON value shaped by a caller-supplied schema. Each
prompt is one request bracketed by the usage gate's start and end
checks; a veto at either point yields ``result=None`` without raising.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pipeline_agent.agent.analysis import json_schema_format, parse_structured_output
from pipeline_agent.agent.cancellation import CancelSignal
from pipeline_agent.agent.conversation import Message
from pipeline_agent.agent.engine import Conversation, ModelSettings
from pipeline_agent.config import AgentConfig
from pipeline_agent.llm.litellm import LiteLLMProvider
from pipeline_agent.llm.provider import LLMProvider, TokenUsage
from pipeline_agent.llm.usage import UsageGate
from pipeline_agent.pipeline.schema import SchemaValidator

logger = logging.getLogger(__name__)

SOURCE_PROMPT = "model.prompt"
SOURCE_PROMPT_WITH_SCHEMA = "model.promptWithSchema"


@dataclass
class ModelResult:
    """History of one prompt plus its result (``None`` when vetoed)."""

    messages: list[Message]
    result: Any = None
    usage: TokenUsage | None = None
    stop_reason: str | None = None


PromptMessage = Message | Mapping[str, str]


class ModelClient:
    """Prompts the model with a merged context and a short message list."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        config: AgentConfig | None = None,
        context: Mapping[str, Any] | None = None,
        usage_gate: UsageGate | None = None,
    ):
        self.provider = provider
        self.config = config or AgentConfig()
        self.context = dict(context or {})
        self.usage_gate = usage_gate

    @classmethod
    def from_config(cls, config: AgentConfig | None = None, **kwargs: Any) -> ModelClient:
        config = config or AgentConfig()
        provider = LiteLLMProvider(model=config.model, api_key=config.api_key, api_base=config.api_base)
        return cls(provider, config=config, **kwargs)

    async def prompt(
        self,
        context: Mapping[str, Any] | None,
        messages: list[PromptMessage],
        *,
        cancel: CancelSignal | None = None,
    ) -> ModelResult:
        """Send *messages* and return the model's text as the result."""
        conversation = self._conversation(SOURCE_PROMPT, context, messages, None, cancel)
        await conversation.run()
        return self._result(conversation, conversation.output)

    async def prompt_with_schema(
        self,
        context: Mapping[str, Any] | None,
        messages: list[PromptMessage],
        schema: dict[str, Any],
        *,
        cancel: CancelSignal | None = None,
    ) -> ModelResult:
        """Send *messages* constrained to *schema*; the result is the decoded JSON.

        Raises ``ModelOutputError`` when the text does not decode or does
        not match *schema*.
        """
        validator = SchemaValidator(schema=schema)
        conversation = self._conversation(
            SOURCE_PROMPT_WITH_SCHEMA,
            context,
            messages,
            json_schema_format("output", schema),
            cancel,
        )
        await conversation.run()
        if conversation.output is None:
            return self._result(conversation, None)
        return self._result(conversation, parse_structured_output(conversation.output, validator))

    def _conversation(
        self,
        source: str,
        context: Mapping[str, Any] | None,
        messages: list[PromptMessage],
        response_format: dict[str, Any] | None,
        cancel: CancelSignal | None,
    ) -> Conversation:
        prompt = self._prompt_messages(context, messages)
        logger.debug("Prompt started", extra={"model": self.config.model, "event": source})
        return Conversation(
            self.provider,
            prompt,
            settings=ModelSettings(
                model=self.config.model,
                temperature=self.config.temperature,
                response_format=response_format,
                max_rounds=1,
            ),
            cancel=cancel,
            usage_gate=self.usage_gate,
            source=source,
        )

    def _prompt_messages(
        self,
        context: Mapping[str, Any] | None,
        messages: list[PromptMessage],
    ) -> list[Message]:
        merged = {**self.context, **(context or {})}
        prompt = [Message(seq=0, role="system", content="Prompt context:\n" + json.dumps(merged))]
        for item in messages:
            if isinstance(item, Message):
                role, content = item.role, item.content
            else:
                role, content = item.get("role") or item.get("type"), item.get("content", "")
            prompt.append(Message(seq=len(prompt), role=role, content=content))
        return prompt

    @staticmethod
    def _result(conversation: Conversation, result: Any) -> ModelResult:
        if conversation.halted:
            logger.info("Prompt ended without a result (%s)", conversation.stop_reason)
        return ModelResult(
            messages=conversation.history,
            result=result,
            usage=conversation.usage,
            stop_reason=conversation.stop_reason,
        )
