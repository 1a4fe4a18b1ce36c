"""Tests for Message serialization and orphaned tool-call repair."""

from pipeline_agent.agent.conversation import (
    INTERRUPTED_TOOL_RESULT,
    Message,
    repair_orphaned_tool_calls,
    to_llm_messages,
)

SAMPLE_TOOL_CALLS = [
    {
        "id": "call_1",
        "type": "function",
        "function": {"name": "goto", "arguments": '{"url": "https://example.com"}'},
    }
]


# ===================================================================
# Message serialization
# ===================================================================


class TestMessage:
    def test_plain_roles_to_llm_dict(self):
        """System, user and assistant (no tools) produce simple role+content dicts."""
        for role in ("system", "user", "assistant"):
            assert Message(seq=0, role=role, content="hi").to_llm_dict() == {
                "role": role,
                "content": "hi",
            }

    def test_assistant_to_llm_dict_with_tools(self):
        m = Message(seq=0, role="assistant", content="", tool_calls=SAMPLE_TOOL_CALLS)
        d = m.to_llm_dict()
        assert d["role"] == "assistant"
        assert d["tool_calls"] == SAMPLE_TOOL_CALLS

    def test_tool_to_llm_dict(self):
        m = Message(seq=0, role="tool", content='{"ok": true}', tool_use_id="call_1")
        assert m.to_llm_dict() == {"role": "tool", "tool_call_id": "call_1", "content": '{"ok": true}'}

    def test_tool_error_content_sent_as_is(self):
        m = Message(
            seq=0,
            role="tool",
            content="Error while executing function: boom",
            tool_use_id="call_1",
            is_error=True,
        )
        assert m.to_llm_dict()["content"] == "Error while executing function: boom"

    def test_storage_roundtrip(self):
        m = Message(seq=5, role="assistant", content="ok", tool_calls=SAMPLE_TOOL_CALLS)
        assert Message.from_storage_dict(m.to_storage_dict()) == m

    def test_storage_dict_edge_cases(self):
        """is_error is preserved; None/False fields are omitted."""
        m = Message(seq=1, role="tool", content="fail", tool_use_id="c1", is_error=True)
        d = m.to_storage_dict()
        assert d["is_error"] is True
        assert Message.from_storage_dict(d).is_error is True

        d2 = Message(seq=0, role="user", content="hi").to_storage_dict()
        assert "tool_use_id" not in d2
        assert "tool_calls" not in d2
        assert "is_error" not in d2


# ===================================================================
# Orphaned tool calls
# ===================================================================


class TestRepair:
    def test_answered_calls_untouched(self):
        msgs = [
            {"role": "assistant", "content": "", "tool_calls": SAMPLE_TOOL_CALLS},
            {"role": "tool", "tool_call_id": "call_1", "content": "{}"},
        ]
        assert repair_orphaned_tool_calls(msgs) == msgs

    def test_missing_result_is_patched_after_assistant(self):
        msgs = [
            {"role": "assistant", "content": "", "tool_calls": SAMPLE_TOOL_CALLS},
            {"role": "user", "content": "next"},
        ]
        repaired = repair_orphaned_tool_calls(msgs)

        assert len(repaired) == 3
        assert repaired[1]["tool_call_id"] == "call_1"
        assert INTERRUPTED_TOOL_RESULT in repaired[1]["content"]
        assert repaired[2] == {"role": "user", "content": "next"}

    def test_to_llm_messages_does_not_modify_history(self):
        history = [Message(seq=0, role="assistant", content="", tool_calls=SAMPLE_TOOL_CALLS)]
        wire = to_llm_messages(history)
        assert len(wire) == 2
        assert len(history) == 1
