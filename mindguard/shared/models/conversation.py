"""Emotion signals and per-user conversation state.

EmotionalAnalysis is the typed boundary record for the emotion collaborator:
payloads are parsed with from_payload() and rejected with ValidationError
instead of being trusted downstream.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from mindguard.shared.errors import ValidationError
from .risk import RiskLevel, SafetyFlag


RECENT_MESSAGE_CAPACITY = 5
PROMPT_CAPACITY = 10
DERIVED_PROMPT_CAPACITY = 5
FLAG_WINDOW = timedelta(hours=24)

SENTIMENT_SUM_TOLERANCE = 0.02
MAX_STRESS_LEVEL = 5.0

ANALYSIS_SOURCES = ("service", "offline", "fallback")


class EmotionLabel(Enum):
    """Scored emotion labels plus NEUTRAL for messages with no dominant emotion."""
    JOY = "joy"
    SADNESS = "sadness"
    ANGER = "anger"
    FEAR = "fear"
    SURPRISE = "surprise"
    DISGUST = "disgust"
    NEUTRAL = "neutral"

    @classmethod
    def scored(cls) -> Tuple["EmotionLabel", ...]:
        return (cls.JOY, cls.SADNESS, cls.ANGER, cls.FEAR, cls.SURPRISE, cls.DISGUST)


def _unit_score(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number, got {type(value).__name__}")
    value = float(value)
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be within [0, 1], got {value}")
    return value


def _string_tuple(name: str, value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValidationError(f"{name} must be a list of strings")
    for item in value:
        if not isinstance(item, str):
            raise ValidationError(f"{name} entries must be strings")
    return tuple(value)


@dataclass(frozen=True)
class SentimentScores:
    positive: float
    neutral: float
    negative: float

    def __post_init__(self):
        for name in ("positive", "neutral", "negative"):
            _unit_score(f"sentiment.{name}", getattr(self, name))
        total = self.positive + self.neutral + self.negative
        if abs(total - 1.0) > SENTIMENT_SUM_TOLERANCE:
            raise ValidationError(f"Sentiment scores must sum to 1, got {total:.3f}")

    @classmethod
    def normalized(cls, positive: float, neutral: float, negative: float) -> "SentimentScores":
        """Scale raw non-negative scores so they sum to 1."""
        total = positive + neutral + negative
        if total <= 0:
            return cls(positive=0.0, neutral=1.0, negative=0.0)
        return cls(
            positive=positive / total,
            neutral=neutral / total,
            negative=negative / total,
        )

    def to_dict(self) -> Dict[str, float]:
        return {"positive": self.positive, "neutral": self.neutral, "negative": self.negative}


@dataclass(frozen=True)
class EmotionScores:
    joy: float = 0.0
    sadness: float = 0.0
    anger: float = 0.0
    fear: float = 0.0
    surprise: float = 0.0
    disgust: float = 0.0

    def __post_init__(self):
        for label in EmotionLabel.scored():
            _unit_score(f"emotions.{label.value}", getattr(self, label.value))

    def score(self, label: EmotionLabel) -> float:
        if label is EmotionLabel.NEUTRAL:
            return 0.0
        return getattr(self, label.value)

    def strongest(self) -> Tuple[EmotionLabel, float]:
        """Arg-max over the scored labels; ties go to the earlier label."""
        best = EmotionLabel.JOY
        for label in EmotionLabel.scored():
            if self.score(label) > self.score(best):
                best = label
        return best, self.score(best)

    def to_dict(self) -> Dict[str, float]:
        return {label.value: self.score(label) for label in EmotionLabel.scored()}


@dataclass(frozen=True)
class EmotionalAnalysis:
    """Sentiment and emotion signal for one message."""
    sentiment: SentimentScores
    emotions: EmotionScores
    key_phrases: Tuple[str, ...] = ()
    stress_indicators: Tuple[str, ...] = ()
    coping_mechanisms: Tuple[str, ...] = ()
    source: str = "service"

    def __post_init__(self):
        if self.source not in ANALYSIS_SOURCES:
            raise ValidationError(f"Unknown analysis source: {self.source}")

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], source: str = "service") -> "EmotionalAnalysis":
        """Parse a collaborator payload.

        Args:
            payload: Mapping with sentiment, emotions and optional phrase lists
            source: Where the payload came from

        Raises:
            ValidationError: If any field is missing or out of range
        """
        if not isinstance(payload, Mapping):
            raise ValidationError("Emotion payload must be a mapping")

        sentiment = payload.get("sentiment")
        emotions = payload.get("emotions")
        if not isinstance(sentiment, Mapping):
            raise ValidationError("Emotion payload is missing sentiment scores")
        if not isinstance(emotions, Mapping):
            raise ValidationError("Emotion payload is missing emotion scores")

        missing = [k for k in ("positive", "neutral", "negative") if k not in sentiment]
        if missing:
            raise ValidationError(f"Sentiment is missing {', '.join(missing)}")

        emotion_values = {}
        for label in EmotionLabel.scored():
            if label.value not in emotions:
                raise ValidationError(f"Emotions are missing {label.value}")
            emotion_values[label.value] = _unit_score(
                f"emotions.{label.value}", emotions[label.value]
            )

        return cls(
            sentiment=SentimentScores(
                positive=_unit_score("sentiment.positive", sentiment["positive"]),
                neutral=_unit_score("sentiment.neutral", sentiment["neutral"]),
                negative=_unit_score("sentiment.negative", sentiment["negative"]),
            ),
            emotions=EmotionScores(**emotion_values),
            key_phrases=_string_tuple("key_phrases", payload.get("key_phrases")),
            stress_indicators=_string_tuple("stress_indicators", payload.get("stress_indicators")),
            coping_mechanisms=_string_tuple("coping_mechanisms", payload.get("coping_mechanisms")),
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sentiment": self.sentiment.to_dict(),
            "emotions": self.emotions.to_dict(),
            "key_phrases": list(self.key_phrases),
            "stress_indicators": list(self.stress_indicators),
            "coping_mechanisms": list(self.coping_mechanisms),
            "source": self.source,
        }


@dataclass(frozen=True)
class MessageSummary:
    """Compact record of one tracked message."""
    timestamp: datetime
    emotional_tone: EmotionLabel
    key_themes: FrozenSet[str] = frozenset()
    user_mood: int = 3

    def __post_init__(self):
        if self.timestamp.tzinfo is None:
            raise ValueError("MessageSummary timestamp must be timezone-aware")
        if isinstance(self.user_mood, bool) or not isinstance(self.user_mood, int):
            raise ValueError(f"user_mood must be an integer, got {self.user_mood!r}")
        if not 1 <= self.user_mood <= 5:
            raise ValueError(f"user_mood must be 1-5, got {self.user_mood}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "emotional_tone": self.emotional_tone.value,
            "key_themes": sorted(self.key_themes),
            "user_mood": self.user_mood,
        }


@dataclass(frozen=True)
class EmotionalState:
    """Derived summary of a user's recent emotional signal."""
    current_mood: int = 3
    dominant_emotion: EmotionLabel = EmotionLabel.NEUTRAL
    stress_level: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW

    def __post_init__(self):
        if not 1 <= self.current_mood <= 5:
            raise ValueError(f"current_mood must be 1-5, got {self.current_mood}")
        if not 0.0 <= self.stress_level <= MAX_STRESS_LEVEL:
            raise ValueError(
                f"stress_level must be 0-{MAX_STRESS_LEVEL}, got {self.stress_level}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_mood": self.current_mood,
            "dominant_emotion": self.dominant_emotion.value,
            "stress_level": self.stress_level,
            "risk_level": self.risk_level.value,
        }


@dataclass
class ConversationContext:
    """Short-term state for one user.

    Mutated only by the state tracker while it holds the user's reservation.
    recent_messages never exceeds RECENT_MESSAGE_CAPACITY and safety_flags is
    pruned to the flag window on every mutation.
    """
    user_id: str
    session_id: str
    emotional_state: EmotionalState = field(default_factory=EmotionalState)
    recent_messages: List[MessageSummary] = field(default_factory=list)
    personalized_prompts: List[str] = field(default_factory=list)
    safety_flags: List[SafetyFlag] = field(default_factory=list)
    created_at: Optional[datetime] = None

    @property
    def last_message_at(self) -> Optional[datetime]:
        if not self.recent_messages:
            return None
        return self.recent_messages[-1].timestamp

    def add_message_summary(self, summary: MessageSummary) -> None:
        self.recent_messages.append(summary)
        overflow = len(self.recent_messages) - RECENT_MESSAGE_CAPACITY
        if overflow > 0:
            del self.recent_messages[:overflow]

    def add_personalized_prompt(self, prompt: str) -> None:
        if prompt in self.personalized_prompts:
            return
        self.personalized_prompts.append(prompt)
        overflow = len(self.personalized_prompts) - PROMPT_CAPACITY
        if overflow > 0:
            del self.personalized_prompts[:overflow]

    def set_personalized_prompts(self, prompts: Sequence[str]) -> None:
        unique: List[str] = []
        for prompt in prompts:
            if prompt not in unique:
                unique.append(prompt)
        self.personalized_prompts = unique[:DERIVED_PROMPT_CAPACITY]

    def prune_flags(self, now: datetime, window: timedelta = FLAG_WINDOW) -> None:
        cutoff = now - window
        self.safety_flags = [f for f in self.safety_flags if f.timestamp >= cutoff]

    def add_safety_flag(self, flag: SafetyFlag, now: datetime, window: timedelta = FLAG_WINDOW) -> None:
        self.safety_flags.append(flag)
        self.prune_flags(now, window)

    def active_flags(self, now: datetime, window: timedelta = FLAG_WINDOW) -> List[SafetyFlag]:
        cutoff = now - window
        return [f for f in self.safety_flags if f.timestamp >= cutoff]

    def start_new_session(self, session_id: str) -> None:
        """Clear short-term history; emotional state and flags carry over."""
        self.session_id = session_id
        self.recent_messages = []
        self.personalized_prompts = []

    def to_dict(self, now: datetime, window: timedelta = FLAG_WINDOW) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "emotional_state": self.emotional_state.to_dict(),
            "recent_messages": [m.to_dict() for m in self.recent_messages],
            "personalized_prompts": list(self.personalized_prompts),
            "safety_flags": [f.to_dict() for f in self.active_flags(now, window)],
        }
