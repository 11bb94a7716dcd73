"""Long-window message history used by pattern analysis.

This is the day-scale history of MessageSummary records, separate from the
five-entry rolling buffer on ConversationContext.
"""
import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, List

from mindguard.shared.database import BaseRepository, ConnectionManager
from mindguard.shared.models import EmotionLabel, MessageSummary
from mindguard.shared.utils import hash_pii

logger = logging.getLogger(__name__)

DEFAULT_MAX_SUMMARIES = 1000


class MessageHistoryStore(ABC):
    """Storage collaborator for per-user message summaries."""

    @abstractmethod
    def get_recent_summaries(self, user_id: str, since: datetime) -> List[MessageSummary]:
        """Summaries at or after since, oldest first."""
        pass

    @abstractmethod
    def record_summary(self, user_id: str, summary: MessageSummary) -> None:
        pass

    @abstractmethod
    def prune_before(self, cutoff: datetime) -> int:
        """Expire summaries older than cutoff; returns how many were removed."""
        pass


class InMemoryMessageHistoryStore(MessageHistoryStore):
    """Process-local history, capped per user."""

    def __init__(self, max_per_user: int = DEFAULT_MAX_SUMMARIES):
        self.max_per_user = max_per_user
        self._summaries: Dict[str, Deque[MessageSummary]] = {}

    def get_recent_summaries(self, user_id: str, since: datetime) -> List[MessageSummary]:
        summaries = self._summaries.get(user_id, ())
        return sorted((s for s in summaries if s.timestamp >= since), key=lambda s: s.timestamp)

    def record_summary(self, user_id: str, summary: MessageSummary) -> None:
        summaries = self._summaries.get(user_id)
        if summaries is None:
            summaries = deque(maxlen=self.max_per_user)
            self._summaries[user_id] = summaries
        summaries.append(summary)

    def prune_before(self, cutoff: datetime) -> int:
        removed = 0
        for user_id in list(self._summaries):
            summaries = self._summaries[user_id]
            kept = [s for s in summaries if s.timestamp >= cutoff]
            removed += len(summaries) - len(kept)
            if kept:
                self._summaries[user_id] = deque(kept, maxlen=self.max_per_user)
            else:
                del self._summaries[user_id]
        if removed:
            logger.info("MESSAGE_HISTORY_PRUNED", extra={"removed_count": removed})
        return removed


class MessageSummaryRepository(BaseRepository[MessageSummary], MessageHistoryStore):
    """message_summaries table, keyed by hashed user id.

    CREATE TABLE message_summaries (
        id BIGSERIAL PRIMARY KEY,
        user_id_hash VARCHAR(64) NOT NULL,
        emotional_tone VARCHAR(16) NOT NULL,
        key_themes TEXT[] NOT NULL DEFAULT '{}',
        user_mood SMALLINT NOT NULL CHECK (user_mood BETWEEN 1 AND 5),
        created_at TIMESTAMPTZ NOT NULL
    );
    CREATE INDEX idx_message_summaries_user ON message_summaries (user_id_hash, created_at);
    """

    columns = ("emotional_tone", "key_themes", "user_mood", "created_at")

    def __init__(self, connection_manager: ConnectionManager, table_name: str = "message_summaries"):
        super().__init__(connection_manager, table_name)

    def _row_to_entity(self, row: tuple) -> MessageSummary:
        emotional_tone, key_themes, user_mood, created_at = row
        return MessageSummary(
            timestamp=created_at,
            emotional_tone=EmotionLabel(emotional_tone),
            key_themes=frozenset(key_themes or ()),
            user_mood=int(user_mood),
        )

    def _entity_to_params(self, entity: MessageSummary) -> Dict[str, Any]:
        return {
            "emotional_tone": entity.emotional_tone.value,
            "key_themes": sorted(entity.key_themes),
            "user_mood": entity.user_mood,
            "created_at": entity.timestamp,
        }

    def get_recent_summaries(self, user_id: str, since: datetime) -> List[MessageSummary]:
        return self.find_since(hash_pii(user_id), since)

    def record_summary(self, user_id: str, summary: MessageSummary) -> None:
        self.append(hash_pii(user_id), summary)

    def prune_before(self, cutoff: datetime) -> int:
        return self.delete_before(cutoff)
