"""Remote model abstraction and usage gate."""

from pipeline_agent.llm.litellm import LiteLLMProvider
from pipeline_agent.llm.provider import (
    LLMProvider,
    ModelRequest,
    ModelResponse,
    TokenUsage,
    Tool,
    ToolUse,
)
from pipeline_agent.llm.usage import UsageEvent, UsageGate, UsageMonitor

__all__ = [
    "LLMProvider",
    "LiteLLMProvider",
    "ModelRequest",
    "ModelResponse",
    "TokenUsage",
    "Tool",
    "ToolUse",
    "UsageEvent",
    "UsageGate",
    "UsageMonitor",
]
