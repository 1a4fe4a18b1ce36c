"""Exception hierarchy for the pipeline agent.

Transport errors raised by the model provider are deliberately absent:
they propagate to the caller unmodified.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for all errors raised by the pipeline agent."""


class ExchangeCancelledError(AgentError):
    """Raised when the cancellation signal of an exchange has been observed."""

    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__(reason or "Conversation aborted")


# ---------------------------------------------------------------------------
# Misuse
# ---------------------------------------------------------------------------


class MisuseError(AgentError):
    """The caller drove a component in a way it does not support. Not retried."""


class ConversationCompleteError(MisuseError):
    """Raised when driving a conversation that already produced its output."""

    def __init__(self) -> None:
        super().__init__("Cannot start a conversation that is already complete")


class MissingPromptError(MisuseError):
    """Raised when a snapshot carries no recoverable prompt."""

    def __init__(self, conversation_id: str | None = None):
        self.conversation_id = conversation_id
        suffix = f" for conversation {conversation_id}" if conversation_id else ""
        super().__init__(f"No prompt available{suffix}")


class UnknownToolError(MisuseError):
    """Raised when the model calls a tool the dispatcher does not know."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Invalid function name: {name}")


# ---------------------------------------------------------------------------
# Tool servicing
# ---------------------------------------------------------------------------


class ToolInputError(AgentError):
    """Tool arguments could not be interpreted (bad JSON, missing field)."""


class SchemaNotFoundError(AgentError):
    """A node schema could not be resolved from the catalogs."""

    def __init__(self, node_type: str):
        self.node_type = node_type
        super().__init__(f"Node schema was not found: {node_type}")


# ---------------------------------------------------------------------------
# Artifact errors (recoverable inside the retry workflow)
# ---------------------------------------------------------------------------


class ArtifactError(AgentError):
    """Base for parse / validation / compile failures of a pipeline candidate."""

    diagnostic_type = "artifact-error"

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = list(errors or [])
        super().__init__(message)

    def to_diagnostic(self) -> dict:
        """Payload injected into the conversation so the model can correct itself."""
        diagnostic: dict = {"type": self.diagnostic_type, "message": str(self)}
        if self.errors:
            diagnostic["errors"] = self.errors
        return diagnostic


class ArtifactParseError(ArtifactError):
    diagnostic_type = "parse-error"


class ArtifactValidationError(ArtifactError):
    diagnostic_type = "validate-error"


class ArtifactCompileError(ArtifactError):
    diagnostic_type = "pipeline-compile-errors"


# ---------------------------------------------------------------------------
# Structured model output
# ---------------------------------------------------------------------------


class ModelOutputError(AgentError):
    """Model text did not parse as JSON or did not match the requested schema."""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = list(errors or [])
        super().__init__(message)
