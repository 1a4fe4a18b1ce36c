"""Tests for the persisted snapshot schema and SnapshotStore."""

import json
import re
from pathlib import Path

import pytest
from mock_llm import GOTO_PIPELINE

from pipeline_agent import config
from pipeline_agent.config import AgentConfig
from pipeline_agent.schemas.snapshot import (
    AddInstructionsRequest,
    AgentPhase,
    ArtifactState,
    ChatEntry,
    ConversationSnapshot,
    OutputPayload,
    PauseRequest,
    PendingQuestion,
    ResumeRequest,
    parse_control_request,
)
from pipeline_agent.storage.snapshot_store import SnapshotStore, generate_conversation_id


def _full_snapshot(conversation_id: str = "conv_full") -> ConversationSnapshot:
    return ConversationSnapshot(
        conversation_id=conversation_id,
        prompt="go to example.com",
        instructions=["use https"],
        phase=AgentPhase.PAUSED,
        resume_phase=AgentPhase.AWAITING_USER,
        pause_reason="review",
        artifact=ArtifactState(raw=GOTO_PIPELINE, compiled=GOTO_PIPELINE, stats={"steps": 1}),
        pending_question=PendingQuestion(question="Which account?", urgency="high"),
        output=OutputPayload(data={"rows": [1, 2]}, description="rows", final=False),
        chat_messages=[ChatEntry(message="hello", audience="user")],
        messages=[{"seq": 0, "role": "user", "content": "go"}],
        status="Awaiting user input",
        status_metadata={"rounds": 2},
        retry_count=1,
        exchange_count=3,
    )


# ===================================================================
# Snapshot schema
# ===================================================================


class TestSnapshotSchema:
    def test_minimal_snapshot_defaults(self):
        snapshot = ConversationSnapshot(conversation_id="conv_1")
        assert snapshot.phase == AgentPhase.IDLE
        assert snapshot.prompt is None
        assert snapshot.artifact is None
        assert snapshot.pending_question is None
        assert snapshot.instructions == []

    def test_optional_fields_absent_from_json(self):
        data = ConversationSnapshot(conversation_id="conv_1", prompt="p").to_json()
        for key in ("artifact", "pending_question", "output", "resume_phase", "pause_reason", "messages"):
            assert f'"{key}"' not in data

    def test_full_snapshot_round_trips(self):
        snapshot = _full_snapshot()
        assert ConversationSnapshot.from_json(snapshot.to_json()) == snapshot

    def test_minimal_snapshot_round_trips(self):
        snapshot = ConversationSnapshot(conversation_id="conv_1", prompt="p")
        assert ConversationSnapshot.from_json(snapshot.to_json()) == snapshot

    def test_phase_serialized_by_value(self):
        snapshot = ConversationSnapshot(conversation_id="c", phase=AgentPhase.AWAITING_USER)
        assert '"phase":"awaiting-user"' in snapshot.to_json()

    def test_unknown_fields_preserved(self):
        data = '{"conversation_id": "c", "prompt": "p", "host_extension": {"a": 1}}'
        snapshot = ConversationSnapshot.from_json(data)
        assert ConversationSnapshot.from_json(snapshot.to_json()).host_extension == {"a": 1}

    def test_helpers(self):
        assert ConversationSnapshot(conversation_id="c", phase=AgentPhase.COMPLETE).is_complete
        assert ConversationSnapshot(conversation_id="c", phase=AgentPhase.PAUSED).is_paused
        assert not ConversationSnapshot(conversation_id="c", phase=AgentPhase.COMPLETE).is_resumable


class TestControlRequestParsing:
    def test_discriminated_union(self):
        assert isinstance(parse_control_request({"type": "pause"}), PauseRequest)
        assert isinstance(parse_control_request({"type": "resume"}), ResumeRequest)
        request = parse_control_request({"type": "add-instructions", "messages": ["a"]})
        assert isinstance(request, AddInstructionsRequest)
        assert request.messages == ["a"]

    def test_model_instances_pass_through(self):
        request = PauseRequest(reason="x")
        assert parse_control_request(request) is request

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            parse_control_request({"type": "explode"})


# ===================================================================
# SnapshotStore
# ===================================================================


class TestSnapshotStore:
    def test_conversation_id_format(self):
        assert re.fullmatch(r"conv_\d{8}_\d{6}_[0-9a-f]{8}", generate_conversation_id())

    def test_default_base_path_follows_config_file(self, tmp_path: Path, monkeypatch):
        path = tmp_path / "configuration.json"
        path.write_text(json.dumps({"storage_path": str(tmp_path / "store")}))
        monkeypatch.setattr(config, "AGENT_CONFIG_FILE", path)

        store = SnapshotStore()

        assert store.conversations_dir == tmp_path / "store" / "conversations"

    @pytest.mark.asyncio
    async def test_from_config_writes_under_storage_path(self, tmp_path: Path):
        store = SnapshotStore.from_config(AgentConfig(storage_path=tmp_path / "agent"))

        await store.write_snapshot(_full_snapshot())

        assert (tmp_path / "agent" / "conversations" / "conv_full" / "state.json").exists()

    @pytest.mark.asyncio
    async def test_write_and_read(self, tmp_path: Path):
        store = SnapshotStore(tmp_path)
        snapshot = _full_snapshot()

        await store.write_snapshot(snapshot)

        assert store.get_state_path("conv_full").exists()
        assert await store.read_snapshot("conv_full") == snapshot
        assert await store.snapshot_exists("conv_full")

    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self, tmp_path: Path):
        assert await SnapshotStore(tmp_path).read_snapshot("conv_missing") is None

    @pytest.mark.asyncio
    async def test_overwrite_leaves_no_temp_files(self, tmp_path: Path):
        store = SnapshotStore(tmp_path)
        snapshot = _full_snapshot()
        await store.write_snapshot(snapshot)
        await store.write_snapshot(snapshot.model_copy(update={"status": "again"}))

        files = [p.name for p in store.get_conversation_path("conv_full").iterdir()]
        assert files == ["state.json"]
        assert (await store.read_snapshot("conv_full")).status == "again"

    @pytest.mark.asyncio
    async def test_list_filters_by_phase_and_skips_corrupt(self, tmp_path: Path):
        store = SnapshotStore(tmp_path)
        await store.write_snapshot(_full_snapshot("conv_a"))
        await store.write_snapshot(
            ConversationSnapshot(conversation_id="conv_b", prompt="p", phase=AgentPhase.COMPLETE)
        )
        corrupt = store.get_state_path("conv_c")
        corrupt.parent.mkdir(parents=True)
        corrupt.write_text("{not json")

        everything = await store.list_snapshots()
        complete = await store.list_snapshots(phase="complete")

        assert {s.conversation_id for s in everything} == {"conv_a", "conv_b"}
        assert [s.conversation_id for s in complete] == ["conv_b"]

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path: Path):
        store = SnapshotStore(tmp_path)
        await store.write_snapshot(_full_snapshot())

        assert await store.delete_snapshot("conv_full") is True
        assert await store.delete_snapshot("conv_full") is False
        assert not await store.snapshot_exists("conv_full")
