"""Per-user conversation context storage with an injected expiry policy."""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional

from mindguard.shared.models import ConversationContext
from mindguard.shared.utils import hash_pii

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextExpiryPolicy:
    """When a session ends and when an idle context is dropped entirely."""
    session_ttl: timedelta = timedelta(hours=24)
    idle_ttl: timedelta = timedelta(days=7)

    def __post_init__(self):
        if self.idle_ttl < self.session_ttl:
            raise ValueError("idle_ttl must not be shorter than session_ttl")

    def session_expired(self, context: ConversationContext, now: datetime) -> bool:
        last = context.last_message_at
        return last is not None and now - last > self.session_ttl

    def is_idle(self, context: ConversationContext, now: datetime) -> bool:
        last = context.last_message_at or context.created_at
        return last is not None and now - last > self.idle_ttl


class ContextRepository(ABC):
    """Storage for one ConversationContext per user."""

    @abstractmethod
    def get(self, user_id: str) -> Optional[ConversationContext]:
        pass

    @abstractmethod
    def save(self, context: ConversationContext) -> None:
        pass

    @abstractmethod
    def delete(self, user_id: str) -> bool:
        pass

    @abstractmethod
    def __iter__(self) -> Iterator[ConversationContext]:
        pass

    def evict_idle(self, policy: ContextExpiryPolicy, now: datetime) -> List[str]:
        """Drop contexts idle past the policy; returns the evicted user ids."""
        evicted = [c.user_id for c in list(self) if policy.is_idle(c, now)]
        for user_id in evicted:
            self.delete(user_id)
        if evicted:
            logger.info("IDLE_CONTEXTS_EVICTED", extra={"count": len(evicted)})
        return evicted


class InMemoryContextRepository(ContextRepository):
    """Process-local context store."""

    def __init__(self):
        self._contexts: Dict[str, ConversationContext] = {}

    def get(self, user_id: str) -> Optional[ConversationContext]:
        return self._contexts.get(user_id)

    def save(self, context: ConversationContext) -> None:
        self._contexts[context.user_id] = context

    def delete(self, user_id: str) -> bool:
        removed = self._contexts.pop(user_id, None) is not None
        if removed:
            logger.debug("CONTEXT_DELETED", extra={"user_id_hash": hash_pii(user_id)})
        return removed

    def __iter__(self) -> Iterator[ConversationContext]:
        return iter(list(self._contexts.values()))

    def __len__(self) -> int:
        return len(self._contexts)
