"""Mood-pattern and check-in trigger analysis over day-scale history.

Mood trend uses a single formula: split the window chronologically in half
and compare the average mood of each half. A difference above +0.5 is
improving, below -0.5 declining; the normalized severity is |delta| / 4.

Stress is on the 0-5 scale used everywhere else in the pipeline.
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from mindguard.shared.models import (
    CheckInFrequency,
    CheckInTrigger,
    MessageSummary,
    MoodPattern,
    MoodTrend,
    TriggerSeverity,
    TriggerType,
)
from mindguard.shared.utils import Clock, hash_pii, utc_now
from .history_store import MessageHistoryStore

logger = logging.getLogger(__name__)

TREND_DELTA = 0.5
DECLINE_SEVERITY_THRESHOLD = 0.3
DECLINE_HIGH_SEVERITY = 0.6
STRESS_THRESHOLD = 3.5
STRESS_HIGH = 4.0
BASELINE_STRESS = 2.0
MAX_STRESS = 5.0
CONCERN_THRESHOLD = 0.4
CONCERN_HIGH = 0.7
CONCERN_WEIGHT = 0.2
INACTIVITY_DAYS = 7
MAX_QUESTIONS = 5

STRESS_THEME_KEYWORDS = ("stress", "overwhelmed", "pressure", "anxious", "worried")
CONCERNING_KEYWORDS = ("hurt", "harm", "hopeless", "worthless", "end", "give up")

# Word-start match so topic labels such as "friends" do not count as "end"
_CONCERNING_PATTERNS = tuple(
    (keyword, re.compile(r"\b" + re.escape(keyword))) for keyword in CONCERNING_KEYWORDS
)

MOOD_QUESTION = "How are you feeling today on a scale of 1-5?"

CHECK_IN_QUESTIONS = (
    MOOD_QUESTION,
    "What's been on your mind lately?",
    "How has your stress level been?",
    "Have you been sleeping well?",
    "What's one thing that brought you joy recently?",
    "Is there anything you're worried about?",
    "How connected do you feel to others right now?",
    "What would help you feel better today?",
    "Have you been taking care of yourself?",
    "What's been challenging for you lately?",
)

PATTERN_QUESTIONS = (
    (TriggerType.MOOD_DECLINE,
     "I've noticed you might be going through a tough time. What's been weighing on you?"),
    (TriggerType.STRESS_SPIKE,
     "Your stress levels seem elevated lately. What's been causing you the most stress?"),
    (TriggerType.INACTIVITY,
     "I haven't heard from you in a while. How have you been taking care of yourself?"),
    (TriggerType.CONCERNING_LANGUAGE,
     "I want to make sure you're okay. Is there anything you'd like to talk about?"),
)

CHECK_IN_INTERVALS = {
    CheckInFrequency.DAILY: timedelta(days=1),
    CheckInFrequency.WEEKLY: timedelta(days=7),
    CheckInFrequency.CUSTOM: timedelta(days=3),
}


def average_mood(messages: Sequence[MessageSummary]) -> float:
    return sum(m.user_mood for m in messages) / len(messages)


def mood_trend(messages: Sequence[MessageSummary]) -> Tuple[MoodTrend, float]:
    """Half-window trend and its normalized severity in [0, 1]."""
    if len(messages) < 2:
        return MoodTrend.STABLE, 0.0
    ordered = sorted(messages, key=lambda m: m.timestamp)
    middle = len(ordered) // 2
    delta = average_mood(ordered[middle:]) - average_mood(ordered[:middle])
    severity = min(abs(delta) / 4, 1.0)
    if delta > TREND_DELTA:
        return MoodTrend.IMPROVING, severity
    if delta < -TREND_DELTA:
        return MoodTrend.DECLINING, severity
    return MoodTrend.STABLE, severity


def average_stress(messages: Sequence[MessageSummary]) -> float:
    """Baseline 2 plus stress-theme hits per message, capped at 5."""
    hits = sum(
        1 for m in messages for theme in m.key_themes
        if any(keyword in theme.lower() for keyword in STRESS_THEME_KEYWORDS)
    )
    return min(MAX_STRESS, BASELINE_STRESS + hits / len(messages))


def concerning_language(messages: Iterable[MessageSummary]) -> Tuple[float, List[str]]:
    """Score of 0.2 per concerning keyword found in themes, capped at 1."""
    score = 0.0
    found: List[str] = []
    for message in messages:
        for theme in sorted(message.key_themes):
            lowered = theme.lower()
            for keyword, pattern in _CONCERNING_PATTERNS:
                if pattern.search(lowered):
                    score += CONCERN_WEIGHT
                    found.append(keyword)
    return min(1.0, score), found


def concerning_indicators(messages: Sequence[MessageSummary]) -> List[str]:
    indicators = []
    if average_mood(messages) < 2.5:
        indicators.append("Consistently low mood")
    ordered = sorted(messages, key=lambda m: m.timestamp)
    if all(m.user_mood <= 2 for m in ordered[-3:]):
        indicators.append("Recent mood decline")
    return indicators


def period_for_days(days: int) -> str:
    if days <= 7:
        return "daily"
    if days <= 30:
        return "weekly"
    return "monthly"


class PatternAnalyzer:
    """Check-in triggers and mood patterns for one user's recent history."""

    def __init__(
        self,
        history_store: MessageHistoryStore,
        clock: Clock = utc_now,
        window_days: int = INACTIVITY_DAYS,
    ):
        self.history_store = history_store
        self.clock = clock
        self.window_days = window_days

    def _recent(self, user_id: str, days: int, now: datetime) -> List[MessageSummary]:
        return self.history_store.get_recent_summaries(user_id, now - timedelta(days=days))

    def analyze_user_patterns(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> List[CheckInTrigger]:
        """Check-in triggers from the last window of history.

        Args:
            user_id: Raw user identifier
            now: Evaluation time; defaults to the analyzer clock

        Returns:
            Triggers in evaluation order; empty when nothing warrants a check-in
        """
        now = now or self.clock()
        messages = self._recent(user_id, self.window_days, now)

        if not messages:
            triggers = [CheckInTrigger(
                trigger_type=TriggerType.INACTIVITY,
                severity=TriggerSeverity.MEDIUM,
                description="User has been inactive for several days",
                threshold=float(self.window_days),
            )]
            self._log_triggers(user_id, triggers, 0)
            return triggers

        triggers: List[CheckInTrigger] = []

        trend, severity = mood_trend(messages)
        if trend is MoodTrend.DECLINING and severity > DECLINE_SEVERITY_THRESHOLD:
            days = len({m.timestamp.date() for m in messages})
            triggers.append(CheckInTrigger(
                trigger_type=TriggerType.MOOD_DECLINE,
                severity=TriggerSeverity.HIGH if severity > DECLINE_HIGH_SEVERITY else TriggerSeverity.MEDIUM,
                description=f"Mood has been declining over the past {days} days",
                threshold=severity,
            ))

        stress = average_stress(messages)
        if stress > STRESS_THRESHOLD:
            triggers.append(CheckInTrigger(
                trigger_type=TriggerType.STRESS_SPIKE,
                severity=TriggerSeverity.HIGH if stress > STRESS_HIGH else TriggerSeverity.MEDIUM,
                description="Elevated stress levels detected in recent conversations",
                threshold=stress,
            ))

        concern, _ = concerning_language(messages)
        if concern > CONCERN_THRESHOLD:
            triggers.append(CheckInTrigger(
                trigger_type=TriggerType.CONCERNING_LANGUAGE,
                severity=TriggerSeverity.HIGH if concern > CONCERN_HIGH else TriggerSeverity.MEDIUM,
                description="Concerning language patterns detected",
                threshold=concern,
            ))

        self._log_triggers(user_id, triggers, len(messages))
        return triggers

    def _log_triggers(self, user_id: str, triggers: List[CheckInTrigger], message_count: int) -> None:
        if not triggers:
            return
        logger.info(
            "CHECK_IN_TRIGGERS_DETECTED",
            extra={
                "user_id_hash": hash_pii(user_id),
                "triggers": [t.trigger_type.value for t in triggers],
                "message_count": message_count,
            }
        )

    def get_user_mood_pattern(
        self,
        user_id: str,
        days: int = 30,
        now: Optional[datetime] = None,
    ) -> MoodPattern:
        now = now or self.clock()
        messages = self._recent(user_id, days, now)

        if not messages:
            return MoodPattern(
                user_id=user_id,
                period="monthly",
                average_mood=3.0,
                mood_trend=MoodTrend.STABLE,
                last_analyzed=now,
            )

        trend, _ = mood_trend(messages)
        return MoodPattern(
            user_id=user_id,
            period=period_for_days(days),
            average_mood=average_mood(messages),
            mood_trend=trend,
            concerning_indicators=tuple(concerning_indicators(messages)),
            last_analyzed=now,
        )

    def get_personalized_questions(
        self,
        trigger_types: Iterable[Union[TriggerType, str]] = (),
        rotation: int = 0,
    ) -> List[str]:
        """Mood question first, one question per trigger type, then base questions.

        rotation shifts where the base questions start so repeated check-ins
        do not always ask the same ones.
        """
        wanted = {TriggerType(t) for t in trigger_types}
        questions = [MOOD_QUESTION]
        questions.extend(q for trigger, q in PATTERN_QUESTIONS if trigger in wanted)

        remaining = [q for q in CHECK_IN_QUESTIONS if q not in questions]
        if remaining:
            offset = rotation % len(remaining)
            remaining = remaining[offset:] + remaining[:offset]
        questions.extend(remaining)
        return questions[:MAX_QUESTIONS]

    def next_check_in(
        self,
        frequency: CheckInFrequency,
        last_check_in: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """When the next check-in should happen, or None if one is not yet due."""
        now = now or self.clock()
        interval = CHECK_IN_INTERVALS[frequency]
        if last_check_in is None or now - last_check_in >= interval:
            return now + interval
        return None

    def scheduled_trigger(
        self,
        frequency: CheckInFrequency,
        last_check_in: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> Optional[CheckInTrigger]:
        now = now or self.clock()
        if self.next_check_in(frequency, last_check_in, now) is None:
            return None
        interval = CHECK_IN_INTERVALS[frequency]
        return CheckInTrigger(
            trigger_type=TriggerType.SCHEDULED,
            severity=TriggerSeverity.LOW,
            description=f"Scheduled {frequency.value} check-in is due",
            threshold=interval.total_seconds() / 86400,
        )
