"""
Pipeline agent - orchestration core of an LLM-driven browser-automation agent.

The agent drives a remote model through a bounded, resumable conversation,
dispatches its tool calls to a browser action executor and a pipeline
compiler, and turns its final answer into a validated automation pipeline.
"""

from pipeline_agent.agent import (
    AnalysisResult,
    CancelSignal,
    Conversation,
    ExchangeCallbacks,
    Message,
    ModelClient,
    PipelineAgent,
    ToolDispatcher,
    apply_control_request,
    generate_until_valid,
)
from pipeline_agent.config import AgentConfig
from pipeline_agent.errors import (
    AgentError,
    ExchangeCancelledError,
    MisuseError,
)
from pipeline_agent.llm import LiteLLMProvider, LLMProvider, UsageGate
from pipeline_agent.schemas import AgentPhase, ConversationSnapshot
from pipeline_agent.storage import SnapshotStore

__all__ = [
    "AgentConfig",
    "AgentError",
    "AgentPhase",
    "AnalysisResult",
    "CancelSignal",
    "Conversation",
    "ConversationSnapshot",
    "ExchangeCallbacks",
    "ExchangeCancelledError",
    "LiteLLMProvider",
    "LLMProvider",
    "Message",
    "MisuseError",
    "ModelClient",
    "PipelineAgent",
    "SnapshotStore",
    "ToolDispatcher",
    "UsageGate",
    "apply_control_request",
    "generate_until_valid",
]
