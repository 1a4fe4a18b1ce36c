"""Message: one append-only history entry of an exchange."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

INTERRUPTED_TOOL_RESULT = "Tool execution was interrupted."


@dataclass
class Message:
    """A single message in a conversation.

    Attributes:
        seq: Monotonic sequence number within the history.
        role: One of "system", "user", "assistant", or "tool".
        content: Message text.
        tool_use_id: Tool call this result answers (``tool_call_id`` on the wire).
        tool_calls: OpenAI-format tool call list for assistant messages.
        is_error: True when a tool result carries an error string.
    """

    seq: int
    role: Literal["system", "user", "assistant", "tool"]
    content: str
    tool_use_id: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    is_error: bool = False

    def to_llm_dict(self) -> dict[str, Any]:
        """Convert to OpenAI-format message dict."""
        if self.role in ("system", "user"):
            return {"role": self.role, "content": self.content}

        if self.role == "assistant":
            d: dict[str, Any] = {"role": "assistant", "content": self.content}
            if self.tool_calls:
                d["tool_calls"] = self.tool_calls
            return d

        # role == "tool"
        return {
            "role": "tool",
            "tool_call_id": self.tool_use_id,
            "content": self.content,
        }

    def to_storage_dict(self) -> dict[str, Any]:
        """Serialize all fields for persistence.  Omits None/default-False fields."""
        d: dict[str, Any] = {
            "seq": self.seq,
            "role": self.role,
            "content": self.content,
        }
        if self.tool_use_id is not None:
            d["tool_use_id"] = self.tool_use_id
        if self.tool_calls is not None:
            d["tool_calls"] = self.tool_calls
        if self.is_error:
            d["is_error"] = self.is_error
        return d

    @classmethod
    def from_storage_dict(cls, data: dict[str, Any]) -> Message:
        """Deserialize from a storage dict."""
        return cls(
            seq=data["seq"],
            role=data["role"],
            content=data["content"],
            tool_use_id=data.get("tool_use_id"),
            tool_calls=data.get("tool_calls"),
            is_error=data.get("is_error", False),
        )


def to_llm_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Wire form of *messages*, with orphaned tool calls answered."""
    return repair_orphaned_tool_calls([m.to_llm_dict() for m in messages])


def repair_orphaned_tool_calls(msgs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Ensure every tool_call has a matching tool-result message."""
    repaired: list[dict[str, Any]] = []
    for i, m in enumerate(msgs):
        repaired.append(m)
        tool_calls = m.get("tool_calls")
        if m.get("role") != "assistant" or not tool_calls:
            continue
        # Collect IDs of tool results that follow this assistant message
        answered: set[str] = set()
        for j in range(i + 1, len(msgs)):
            if msgs[j].get("role") == "tool":
                tid = msgs[j].get("tool_call_id")
                if tid:
                    answered.add(tid)
            else:
                break  # stop at first non-tool message
        for tc in tool_calls:
            tc_id = tc.get("id")
            if tc_id and tc_id not in answered:
                repaired.append(
                    {
                        "role": "tool",
                        "tool_call_id": tc_id,
                        "content": f"Error while executing function: {INTERRUPTED_TOOL_RESULT}",
                    }
                )
    return repaired
