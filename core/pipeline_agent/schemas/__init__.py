"""Schema definitions for persisted conversation state."""

from pipeline_agent.schemas.snapshot import (
    AddInstructionsRequest,
    AgentPhase,
    ArtifactState,
    ChatEntry,
    ControlRequest,
    ConversationSnapshot,
    OutputPayload,
    PauseRequest,
    PendingQuestion,
    ResumeRequest,
    parse_control_request,
)

__all__ = [
    "AddInstructionsRequest",
    "AgentPhase",
    "ArtifactState",
    "ChatEntry",
    "ControlRequest",
    "ConversationSnapshot",
    "OutputPayload",
    "PauseRequest",
    "PendingQuestion",
    "ResumeRequest",
    "parse_control_request",
]
