"""Agent orchestration: engine, dispatcher, retry workflow, state machine."""

from pipeline_agent.agent.analysis import ANALYZE_OUTPUT_SCHEMA, AnalysisResult
from pipeline_agent.agent.cancellation import CancelSignal
from pipeline_agent.agent.conversation import Message
from pipeline_agent.agent.dispatcher import ActionExecutor, ExchangeRecord, ToolDispatcher
from pipeline_agent.agent.engine import Conversation, ModelSettings, ToolSet
from pipeline_agent.agent.model_client import ModelClient, ModelResult
from pipeline_agent.agent.retry import GenerationResult, generate_until_valid
from pipeline_agent.agent.state_machine import ExchangeCallbacks, PipelineAgent, apply_control_request

__all__ = [
    "ANALYZE_OUTPUT_SCHEMA",
    "ActionExecutor",
    "AnalysisResult",
    "CancelSignal",
    "Conversation",
    "ExchangeCallbacks",
    "ExchangeRecord",
    "GenerationResult",
    "Message",
    "ModelClient",
    "ModelResult",
    "ModelSettings",
    "PipelineAgent",
    "ToolDispatcher",
    "ToolSet",
    "apply_control_request",
    "generate_until_valid",
]
