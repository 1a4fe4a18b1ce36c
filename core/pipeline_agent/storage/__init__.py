"""Optional persistence for conversation snapshots."""

from pipeline_agent.storage.snapshot_store import SnapshotStore, generate_conversation_id

__all__ = ["SnapshotStore", "generate_conversation_id"]
