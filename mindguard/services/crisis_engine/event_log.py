"""Safety event log and history-based risk assessment.

The log keeps the most recent events per user in memory (capacity-capped,
oldest dropped) and optionally writes through to a durable
SafetyEventStore. The cap is a storage limit; the 24 hour window used by
assessment is a read filter.
"""
import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from mindguard.shared.database import BaseRepository, ConnectionManager, RepositoryError
from mindguard.shared.models import (
    RiskAssessment,
    RiskLevel,
    SafetyFlag,
    SafetyFlagType,
    Severity,
)
from mindguard.shared.models.conversation import FLAG_WINDOW
from mindguard.shared.utils import Clock, hash_pii, utc_now
from mindguard.services.safety_service.config import RiskThresholds
from mindguard.services.safety_service.detector import CrisisDetector

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

RECOMMENDATIONS = {
    RiskLevel.CRISIS: (
        "Immediate professional intervention required",
        "24/7 monitoring and support",
        "Emergency contact activation",
        "Safety planning with mental health professional",
    ),
    RiskLevel.HIGH: (
        "Schedule immediate appointment with mental health professional",
        "Increase check-in frequency",
        "Activate support network",
        "Consider crisis safety planning",
    ),
    RiskLevel.MEDIUM: (
        "Schedule appointment with counselor or therapist",
        "Regular check-ins and monitoring",
        "Encourage social support engagement",
        "Provide coping strategy resources",
    ),
    RiskLevel.LOW: (
        "Continue regular monitoring",
        "Maintain supportive communication",
        "Provide preventive mental health resources",
    ),
}

FALLBACK_ASSESSMENT = RiskAssessment(
    risk_level=RiskLevel.MEDIUM,
    factors=("Unable to complete risk assessment",),
    recommendations=("Manual review recommended", "Consider professional consultation"),
    monitoring_required=True,
)


class SafetyEventStore(ABC):
    """Durable storage for safety events beyond process lifetime."""

    @abstractmethod
    def append(self, user_id_hash: str, event: SafetyFlag) -> None:
        pass

    @abstractmethod
    def load_recent(self, user_id_hash: str, limit: int) -> List[SafetyFlag]:
        """Newest events for a user, oldest first."""
        pass


class PostgresSafetyEventStore(BaseRepository[SafetyFlag], SafetyEventStore):
    """safety_events table.

    CREATE TABLE safety_events (
        id BIGSERIAL PRIMARY KEY,
        user_id_hash VARCHAR(64) NOT NULL,
        flag_type VARCHAR(32) NOT NULL,
        severity VARCHAR(16) NOT NULL,
        context TEXT NOT NULL,
        action_taken TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    );
    CREATE INDEX idx_safety_events_user ON safety_events (user_id_hash, created_at);
    """

    columns = ("flag_type", "severity", "context", "action_taken", "created_at")

    def __init__(self, connection_manager: ConnectionManager, table_name: str = "safety_events"):
        super().__init__(connection_manager, table_name)

    def _row_to_entity(self, row: tuple) -> SafetyFlag:
        flag_type, severity, context, action_taken, created_at = row
        return SafetyFlag(
            flag_type=SafetyFlagType(flag_type),
            severity=Severity(severity),
            context=context,
            action_taken=action_taken,
            timestamp=created_at,
        )

    def _entity_to_params(self, entity: SafetyFlag) -> Dict[str, Any]:
        return {
            "flag_type": entity.flag_type.value,
            "severity": entity.severity.value,
            "context": entity.context,
            "action_taken": entity.action_taken,
            "created_at": entity.timestamp,
        }

    def load_recent(self, user_id_hash: str, limit: int) -> List[SafetyFlag]:
        return self.find_since(user_id_hash, EPOCH, limit=limit)


class SafetyEventLog:
    """Append-only, capacity-capped event log per user."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        store: Optional[SafetyEventStore] = None,
        clock: Clock = utc_now,
    ):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.store = store
        self.clock = clock
        self._events: Dict[str, Deque[SafetyFlag]] = {}

    def _user_events(self, user_id: str) -> Deque[SafetyFlag]:
        events = self._events.get(user_id)
        if events is None:
            events = deque(self._hydrate(user_id), maxlen=self.capacity)
            self._events[user_id] = events
        return events

    def _peek(self, user_id: str) -> Iterable[SafetyFlag]:
        """Events for reads; unknown users are not given an entry unless the store has history."""
        events = self._events.get(user_id)
        if events is not None:
            return events
        hydrated = self._hydrate(user_id)
        if not hydrated:
            return ()
        events = deque(hydrated, maxlen=self.capacity)
        self._events[user_id] = events
        return events

    def _hydrate(self, user_id: str) -> List[SafetyFlag]:
        if self.store is None:
            return []
        try:
            return self.store.load_recent(hash_pii(user_id), self.capacity)
        except RepositoryError as e:
            logger.error(
                "SAFETY_EVENTS_HYDRATE_FAILED",
                extra={"user_id_hash": hash_pii(user_id), "error": str(e)}
            )
            return []

    def append(self, user_id: str, event: SafetyFlag) -> None:
        self._user_events(user_id).append(event)

        logger.info(
            "SAFETY_EVENT_LOGGED",
            extra={
                "user_id_hash": hash_pii(user_id),
                "flag_type": event.flag_type.value,
                "severity": event.severity.value,
            }
        )

        if self.store is not None:
            try:
                self.store.append(hash_pii(user_id), event)
            except RepositoryError as e:
                # The in-memory log still holds the event
                logger.error(
                    "SAFETY_EVENT_PERSIST_FAILED",
                    extra={"user_id_hash": hash_pii(user_id), "error": str(e)}
                )

    def events(self, user_id: str) -> List[SafetyFlag]:
        return list(self._peek(user_id))

    def recent(
        self,
        user_id: str,
        window: timedelta = FLAG_WINDOW,
        now: Optional[datetime] = None,
    ) -> List[SafetyFlag]:
        cutoff = (now or self.clock()) - window
        return [e for e in self._peek(user_id) if e.timestamp >= cutoff]

    def evict(self, user_id: str) -> bool:
        """Drop a user's in-memory events; a configured store keeps its copy."""
        return self._events.pop(user_id, None) is not None

    def evict_idle(self, cutoff: datetime) -> List[str]:
        """Drop users whose newest event is older than cutoff."""
        idle = [
            user_id for user_id, events in self._events.items()
            if not events or events[-1].timestamp < cutoff
        ]
        for user_id in idle:
            del self._events[user_id]
        if idle:
            logger.info("SAFETY_EVENTS_EVICTED", extra={"evicted_count": len(idle)})
        return idle


class HistoryRiskAssessor:
    """Risk level from a user's recent events and recent activity text."""

    def __init__(
        self,
        event_log: SafetyEventLog,
        detector: Optional[CrisisDetector] = None,
        thresholds: Optional[RiskThresholds] = None,
        window: timedelta = FLAG_WINDOW,
    ):
        self.event_log = event_log
        self.detector = detector or CrisisDetector()
        self.thresholds = thresholds or RiskThresholds()
        self.window = window

    def assess(
        self,
        user_id: str,
        recent_activity: Sequence[str],
        now: Optional[datetime] = None,
    ) -> RiskAssessment:
        """Assess risk from the last day of events plus recent messages.

        Never raises; an internal failure yields a conservative medium
        assessment that requires monitoring.
        """
        try:
            return self._assess(user_id, list(recent_activity), now)
        except Exception as e:
            logger.error(
                "RISK_ASSESSMENT_FAILED",
                extra={
                    "user_id_hash": hash_pii(user_id),
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return FALLBACK_ASSESSMENT

    def _assess(self, user_id: str, activity: List[str], now: Optional[datetime]) -> RiskAssessment:
        recent = self.event_log.recent(user_id, self.window, now)
        level = RiskLevel.LOW
        factors: List[str] = []

        if any(e.severity is Severity.CRITICAL for e in recent):
            level = RiskLevel.CRISIS
            factors.append("Recent crisis events detected")

        severe = [e for e in recent if e.severity in (Severity.HIGH, Severity.CRITICAL)]
        if len(severe) >= self.thresholds.high_severity_event_count and level is not RiskLevel.CRISIS:
            level = RiskLevel.HIGH
            factors.append("Multiple high-severity events in recent period")

        activity_factors, suggested = self._activity_patterns(activity)
        factors.extend(activity_factors)
        # Activity language only lifts a low outcome
        if level is RiskLevel.LOW:
            level = suggested

        assessment = RiskAssessment(
            risk_level=level,
            factors=tuple(factors),
            recommendations=RECOMMENDATIONS[level],
            monitoring_required=level in (RiskLevel.HIGH, RiskLevel.CRISIS),
        )
        logger.info(
            "RISK_ASSESSED",
            extra={
                "user_id_hash": hash_pii(user_id),
                "risk_level": level.value,
                "recent_events": len(recent),
                "factor_count": len(factors),
            }
        )
        return assessment

    def _activity_patterns(self, activity: List[str]) -> Tuple[List[str], RiskLevel]:
        factors: List[str] = []
        suggested = RiskLevel.LOW
        if not activity:
            return factors, suggested

        policy = self.detector.policy
        negative = self.detector.count_occurrences(activity, policy.negative_language)
        isolation = self.detector.count_occurrences(activity, policy.isolation_language)
        help_seeking = self.detector.count_occurrences(activity, policy.help_seeking_language)

        if negative > self.thresholds.negative_language_count:
            factors.append("Escalating negative language patterns")
            suggested = RiskLevel.MEDIUM
        if isolation > self.thresholds.isolation_language_count:
            factors.append("Social isolation indicators")
            suggested = RiskLevel.MEDIUM
        # Recorded only; help-seeking never lowers the level
        if help_seeking > self.thresholds.help_seeking_count:
            factors.append("Positive: Help-seeking behavior detected")
        return factors, suggested
