"""
Conversation Snapshot Schema - the persisted cross-run contract.

A snapshot is everything needed to resume an exchange, possibly in
another process: the original prompt, accumulated instructions, the
current phase (and the phase to restore after a pause), the last
artifact, a pending clarification question and status bookkeeping.

Optional fields default to absent and are omitted from the JSON form, so
``ConversationSnapshot.model_validate_json(s.to_json()) == s``.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

SNAPSHOT_SCHEMA_VERSION = 1


def _now() -> str:
    return datetime.now(UTC).isoformat()


class AgentPhase(StrEnum):
    """Phase of a conversation between exchanges."""

    IDLE = "idle"  # Ready to run with the current prompt/instructions
    ACTING = "acting"  # An exchange is in flight
    AWAITING_USER = "awaiting-user"  # A clarification question is pending
    PAUSED = "paused"  # Paused by a control request
    COMPLETE = "complete"  # Artifact or final output delivered
    ERROR = "error"  # Retries exhausted, round bound hit, or vetoed


class ArtifactState(BaseModel):
    """The last emitted pipeline: raw model output plus its compiled form."""

    raw: dict[str, Any]
    compiled: dict[str, Any] | None = None
    stats: dict[str, Any] | None = None

    model_config = {"extra": "allow"}


class PendingQuestion(BaseModel):
    question: str
    urgency: str | None = None

    model_config = {"extra": "allow"}


class OutputPayload(BaseModel):
    """Non-artifact data handed back by the model."""

    data: Any = None
    description: str | None = None
    final: bool = False

    model_config = {"extra": "allow"}


class ChatEntry(BaseModel):
    message: str
    audience: str | None = None

    model_config = {"extra": "allow"}


class ConversationSnapshot(BaseModel):
    """Serializable state of one conversation handle."""

    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    conversation_id: str
    prompt: str | None = None
    instructions: list[str] = Field(default_factory=list)

    phase: AgentPhase = AgentPhase.IDLE
    resume_phase: AgentPhase | None = None
    pause_reason: str | None = None

    artifact: ArtifactState | None = None
    pending_question: PendingQuestion | None = None
    output: OutputPayload | None = None
    chat_messages: list[ChatEntry] = Field(default_factory=list)
    # Raw engine history of the last exchange (Message storage dicts)
    messages: list[dict[str, Any]] | None = None

    status: str | None = None
    status_metadata: dict[str, Any] | None = None
    retry_count: int = 0
    exchange_count: int = 0

    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)

    model_config = {"extra": "allow"}

    @property
    def is_complete(self) -> bool:
        return self.phase == AgentPhase.COMPLETE

    @property
    def is_paused(self) -> bool:
        return self.phase == AgentPhase.PAUSED

    @property
    def is_resumable(self) -> bool:
        return self.phase in (AgentPhase.IDLE, AgentPhase.AWAITING_USER, AgentPhase.PAUSED, AgentPhase.ERROR)

    def to_json(self, **kwargs: Any) -> str:
        return self.model_dump_json(exclude_none=True, **kwargs)

    @classmethod
    def from_json(cls, data: str | bytes) -> "ConversationSnapshot":
        return cls.model_validate_json(data)


# ---------------------------------------------------------------------------
# Control requests
# ---------------------------------------------------------------------------


class PauseRequest(BaseModel):
    type: Literal["pause"] = "pause"
    reason: str | None = None


class ResumeRequest(BaseModel):
    type: Literal["resume"] = "resume"


class AddInstructionsRequest(BaseModel):
    type: Literal["add-instructions"] = "add-instructions"
    messages: list[str] = Field(default_factory=list)


ControlRequest = Annotated[
    PauseRequest | ResumeRequest | AddInstructionsRequest,
    Field(discriminator="type"),
]

_control_request_adapter: TypeAdapter[ControlRequest] = TypeAdapter(ControlRequest)


def parse_control_request(data: dict[str, Any] | BaseModel) -> PauseRequest | ResumeRequest | AddInstructionsRequest:
    """Validate a control request from its JSON form (``{"type": "pause", ...}``)."""
    if isinstance(data, (PauseRequest, ResumeRequest, AddInstructionsRequest)):
        return data
    return _control_request_adapter.validate_python(data)
