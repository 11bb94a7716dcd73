"""Per-user serialization of state mutations, ordered by arrival.

Messages for different users never wait on each other. Messages for the same
user take a reservation when they arrive and mutate state strictly in
reservation order, even if their signal lookups finish out of order.

Usage:
    reservation = serializer.reserve(user_id)
    try:
        signals = await gather_signals()
        async with reservation:
            mutate_user_state()
    finally:
        reservation.release()
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Set

logger = logging.getLogger(__name__)


@dataclass
class _UserQueue:
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)
    issued: int = 0
    serving: int = 0
    finished: Set[int] = field(default_factory=set)


class Reservation:
    """A place in one user's mutation queue."""

    def __init__(self, serializer: "UserSerializer", user_id: str, sequence: int):
        self._serializer = serializer
        self.user_id = user_id
        self.sequence = sequence
        self._completed = False

    async def __aenter__(self) -> "Reservation":
        queue = self._serializer._queues[self.user_id]
        async with queue.condition:
            await queue.condition.wait_for(lambda: queue.serving == self.sequence)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._serializer._complete(self)

    def release(self) -> None:
        """Give up the reservation without waiting; no-op once completed."""
        if self._completed:
            return
        self._serializer._complete_nowait(self)


class UserSerializer:
    """Arrival-ordered, per-user mutual exclusion."""

    def __init__(self):
        self._queues: Dict[str, _UserQueue] = {}

    def reserve(self, user_id: str) -> Reservation:
        queue = self._queues.get(user_id)
        if queue is None:
            queue = _UserQueue()
            self._queues[user_id] = queue
        sequence = queue.issued
        queue.issued += 1
        return Reservation(self, user_id, sequence)

    def pending(self, user_id: str) -> int:
        queue = self._queues.get(user_id)
        if queue is None:
            return 0
        return queue.issued - queue.serving

    async def _complete(self, reservation: Reservation) -> None:
        queue = self._queues.get(reservation.user_id)
        if queue is None or reservation._completed:
            return
        async with queue.condition:
            self._advance(queue, reservation)
            queue.condition.notify_all()
        self._drop_if_idle(reservation.user_id, queue)

    def _complete_nowait(self, reservation: Reservation) -> None:
        queue = self._queues.get(reservation.user_id)
        if queue is None:
            return
        self._advance(queue, reservation)
        if queue.serving < queue.issued:
            # Wake waiters from a task so the condition lock is honoured
            asyncio.ensure_future(self._notify(queue))
        self._drop_if_idle(reservation.user_id, queue)

    @staticmethod
    def _advance(queue: _UserQueue, reservation: Reservation) -> None:
        reservation._completed = True
        queue.finished.add(reservation.sequence)
        while queue.serving in queue.finished:
            queue.finished.discard(queue.serving)
            queue.serving += 1

    @staticmethod
    async def _notify(queue: _UserQueue) -> None:
        async with queue.condition:
            queue.condition.notify_all()

    def _drop_if_idle(self, user_id: str, queue: _UserQueue) -> None:
        if queue.serving == queue.issued and self._queues.get(user_id) is queue:
            del self._queues[user_id]
