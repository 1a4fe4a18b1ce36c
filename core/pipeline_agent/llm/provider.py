"""LLM provider abstraction for the remote model endpoint."""

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

# Parameters a provider is allowed to drop when the model rejects them.
DEGRADABLE_PARAMETERS = ("temperature",)


@dataclass
class Tool:
    """A tool declaration sent to the model."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)
    strict: bool = False


@dataclass
class ToolUse:
    """A tool call requested by the model.

    ``input`` holds the decoded arguments. When the arguments were not valid
    JSON the raw text is kept under the ``_raw`` key.
    """

    id: str
    name: str
    input: dict[str, Any]

    @property
    def has_truncated_arguments(self) -> bool:
        return "_raw" in self.input


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass
class ModelRequest:
    """One request to the remote model: full history plus active tools."""

    model: str
    messages: list[dict[str, Any]]
    tools: list[Tool] = field(default_factory=list)
    response_format: dict[str, Any] | None = None
    temperature: float | None = None
    extra_params: dict[str, Any] = field(default_factory=dict)

    def without(self, parameter: str) -> "ModelRequest":
        """Return a copy of this request with *parameter* removed."""
        if parameter == "temperature":
            return dataclasses.replace(self, temperature=None)
        if parameter == "response_format":
            return dataclasses.replace(self, response_format=None)
        extra = {k: v for k, v in self.extra_params.items() if k != parameter}
        return dataclasses.replace(self, extra_params=extra)

    def has_parameter(self, parameter: str) -> bool:
        if parameter == "temperature":
            return self.temperature is not None
        if parameter == "response_format":
            return self.response_format is not None
        return parameter in self.extra_params


@dataclass
class ModelResponse:
    """Response from the remote model.

    Any text is a message item and makes the response terminal. A
    response with only tool calls asks for actions and another round.
    """

    text: str = ""
    tool_calls: list[ToolUse] = field(default_factory=list)
    usage: TokenUsage | None = None
    model: str = ""
    stop_reason: str = ""
    raw_response: Any = None

    @property
    def is_terminal(self) -> bool:
        return bool(self.text) or not self.tool_calls


class LLMProvider(ABC):
    """
    Abstract provider for the remote model endpoint.

    Implementations handle authentication, wire formatting and token
    counting. Errors are raised unmodified; the conversation engine decides
    which of them qualify for the single degrade-retry.
    """

    @abstractmethod
    async def respond(self, request: ModelRequest) -> ModelResponse:
        """Send *request* and return the parsed response."""

    def unsupported_parameter(self, error: BaseException, request: ModelRequest) -> str | None:
        """Return the parameter *error* complains about, if it is degradable.

        The default matches rejections of the form "'temperature' is not
        supported with this model" carrying an HTTP 400 (or no status).
        """
        message = str(error).lower()
        if "not supported" not in message and "unsupported" not in message:
            return None
        status = getattr(error, "status_code", None) or getattr(error, "status", None)
        if status is not None and status != 400:
            return None
        for parameter in DEGRADABLE_PARAMETERS:
            if parameter in message and request.has_parameter(parameter):
                return parameter
        return None
