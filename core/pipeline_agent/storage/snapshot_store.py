"""
Snapshot Store - optional on-disk persistence of conversation snapshots.

Layout:
  {base_path}/conversations/conv_YYYYMMDD_HHMMSS_{uuid}/state.json
"""

import asyncio
import logging
import shutil
import uuid
from datetime import datetime
from pathlib import Path

from pipeline_agent.config import AgentConfig, get_storage_path
from pipeline_agent.schemas.snapshot import AgentPhase, ConversationSnapshot
from pipeline_agent.utils.io import atomic_write

logger = logging.getLogger(__name__)


def generate_conversation_id() -> str:
    """
    Generate conversation ID in format: conv_YYYYMMDD_HHMMSS_{uuid}.

    Returns:
        Conversation ID string (e.g., "conv_20260206_143022_abc12345")
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    short_uuid = uuid.uuid4().hex[:8]
    return f"conv_{timestamp}_{short_uuid}"


class SnapshotStore:
    """
    Stores one state.json per conversation handle.

    The agent itself never writes to disk; callers persist the snapshot
    returned by each exchange and load it again to resume.
    """

    def __init__(self, base_path: Path | None = None):
        """
        Initialize snapshot store.

        Args:
            base_path: Base path for storage (e.g., ~/.browsary/agent).
                Defaults to the configured storage_path.
        """
        self.base_path = Path(base_path) if base_path is not None else get_storage_path()
        self.conversations_dir = self.base_path / "conversations"

    @classmethod
    def from_config(cls, config: AgentConfig) -> "SnapshotStore":
        return cls(config.storage_path)

    def get_conversation_path(self, conversation_id: str) -> Path:
        return self.conversations_dir / conversation_id

    def get_state_path(self, conversation_id: str) -> Path:
        return self.get_conversation_path(conversation_id) / "state.json"

    async def write_snapshot(self, snapshot: ConversationSnapshot) -> None:
        """
        Atomically write state.json for a conversation.

        Uses temp file + rename for crash safety.
        """

        def _write():
            state_path = self.get_state_path(snapshot.conversation_id)
            state_path.parent.mkdir(parents=True, exist_ok=True)

            with atomic_write(state_path) as f:
                f.write(snapshot.to_json(indent=2))

        await asyncio.to_thread(_write)
        logger.debug(f"Wrote state.json for conversation {snapshot.conversation_id}")

    async def read_snapshot(self, conversation_id: str) -> ConversationSnapshot | None:
        """
        Read state.json for a conversation.

        Returns:
            ConversationSnapshot or None if not found
        """

        def _read():
            state_path = self.get_state_path(conversation_id)
            if not state_path.exists():
                return None

            return ConversationSnapshot.from_json(state_path.read_text(encoding="utf-8"))

        return await asyncio.to_thread(_read)

    async def list_snapshots(
        self,
        phase: AgentPhase | str | None = None,
        limit: int = 100,
    ) -> list[ConversationSnapshot]:
        """
        List snapshots, most recently updated first.

        Args:
            phase: Optional phase filter (e.g., "paused", "complete")
            limit: Maximum number of snapshots to return
        """

        def _scan():
            snapshots = []

            if not self.conversations_dir.exists():
                return snapshots

            for conversation_dir in self.conversations_dir.iterdir():
                if not conversation_dir.is_dir():
                    continue

                state_path = conversation_dir / "state.json"
                if not state_path.exists():
                    continue

                try:
                    snapshot = ConversationSnapshot.from_json(state_path.read_text(encoding="utf-8"))
                except Exception as e:
                    logger.warning(f"Failed to load {state_path}: {e}")
                    continue

                if phase and snapshot.phase != phase:
                    continue
                snapshots.append(snapshot)

            snapshots.sort(key=lambda s: s.updated_at, reverse=True)
            return snapshots[:limit]

        return await asyncio.to_thread(_scan)

    async def delete_snapshot(self, conversation_id: str) -> bool:
        """
        Delete a conversation and all its data.

        Returns:
            True if deleted, False if not found
        """

        def _delete():
            conversation_path = self.get_conversation_path(conversation_id)
            if not conversation_path.exists():
                return False

            shutil.rmtree(conversation_path)
            logger.info(f"Deleted conversation {conversation_id}")
            return True

        return await asyncio.to_thread(_delete)

    async def snapshot_exists(self, conversation_id: str) -> bool:
        def _check():
            return self.get_state_path(conversation_id).exists()

        return await asyncio.to_thread(_check)
