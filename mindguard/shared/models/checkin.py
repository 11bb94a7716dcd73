"""Long-window mood patterns and proactive check-in triggers."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Tuple

from mindguard.shared.utils.clock import utc_now


class MoodTrend(Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class TriggerType(Enum):
    MOOD_DECLINE = "mood_decline"
    STRESS_SPIKE = "stress_spike"
    INACTIVITY = "inactivity"
    CONCERNING_LANGUAGE = "concerning_language"
    SCHEDULED = "scheduled"


class TriggerSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CheckInFrequency(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


MOOD_PERIODS = ("daily", "weekly", "monthly")


@dataclass(frozen=True)
class MoodPattern:
    """Average mood and trend for one user over a period."""
    user_id: str
    period: str
    average_mood: float
    mood_trend: MoodTrend
    concerning_indicators: Tuple[str, ...] = ()
    last_analyzed: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if self.period not in MOOD_PERIODS:
            raise ValueError(f"Unknown mood period: {self.period}")
        if self.average_mood and not 1.0 <= self.average_mood <= 5.0:
            raise ValueError(f"average_mood must be 1-5, got {self.average_mood}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "average_mood": round(self.average_mood, 2),
            "mood_trend": self.mood_trend.value,
            "concerning_indicators": list(self.concerning_indicators),
            "last_analyzed": self.last_analyzed.isoformat(),
        }


@dataclass(frozen=True)
class CheckInTrigger:
    """Signal that a proactive wellbeing prompt should be offered."""
    trigger_type: TriggerType
    severity: TriggerSeverity
    description: str
    threshold: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.trigger_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "threshold": self.threshold,
        }
