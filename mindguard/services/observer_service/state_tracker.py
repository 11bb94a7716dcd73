"""Emotional state tracker: one bounded ConversationContext per user.

Each recorded message updates a 5-entry rolling history, the derived
EmotionalState and the personalized prompts. Callers serialize mutations per
user (see UserSerializer); the tracker itself holds no locks.

Stress is reported on a 0.0-5.0 scale with one decimal everywhere.
"""
import logging
import math
import uuid
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from mindguard.shared.errors import InternalStateError, ValidationError
from mindguard.shared.models import (
    ConversationContext,
    EmotionalAnalysis,
    EmotionalState,
    EmotionLabel,
    MessageSummary,
    RiskLevel,
    SafetyFlag,
    Severity,
)
from mindguard.shared.models.conversation import (
    FLAG_WINDOW,
    MAX_STRESS_LEVEL,
    RECENT_MESSAGE_CAPACITY,
)
from mindguard.shared.utils import Clock, hash_pii, utc_now
from mindguard.services.safety_service.config import normalize_text
from .context_repository import ContextExpiryPolicy, ContextRepository, InMemoryContextRepository

logger = logging.getLogger(__name__)

DOMINANT_EMOTION_THRESHOLD = 0.15
MAX_THEME_LENGTH = 50

THEME_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "school": (
        "school", "class", "study", "studies", "studying", "exam", "homework",
        "college", "university", "professor", "teacher", "grade",
    ),
    "family": ("family", "home", "mom", "dad", "parent", "brother", "sister"),
    "friends": ("friend", "social", "roommate"),
}

DEFAULT_PROMPTS = (
    "How are you feeling today?",
    "What's on your mind?",
    "I'm here to listen and support you.",
)

EMOTION_PROMPTS: Dict[EmotionLabel, Tuple[str, ...]] = {
    EmotionLabel.SADNESS: (
        "I noticed you've been feeling down. Would you like to talk about what's troubling you?",
        "Sometimes sharing our feelings can help. What's been weighing on your mind?",
    ),
    EmotionLabel.FEAR: (
        "I sense you might be feeling anxious. What's causing you worry right now?",
        "When we're anxious, it can help to talk through our concerns. What's on your mind?",
    ),
    EmotionLabel.ANGER: (
        "It sounds like something has upset you. Would you like to share what happened?",
        "I'm here to listen if you need to express your frustrations.",
    ),
    EmotionLabel.JOY: (
        "I'm glad to hear you're feeling positive! What's been going well for you?",
        "It's wonderful that you're feeling good. What's bringing you joy today?",
    ),
}

FALLBACK_EMOTION_PROMPTS = (
    "How are you feeling today?",
    "What would you like to talk about?",
    "I'm here to listen and support you.",
)

THEME_PROMPTS = (
    ("school", "How are things going with your studies?"),
    ("family", "How are things with your family?"),
    ("friends", "How are your relationships with friends going?"),
)

PATCHABLE_STATE_FIELDS = ("current_mood", "dominant_emotion", "stress_level", "risk_level")


@dataclass(frozen=True)
class PersonalizationInsights:
    common_themes: Tuple[str, ...]
    emotional_patterns: Tuple[str, ...]
    preferred_topics: Tuple[str, ...]
    risk_factors: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "common_themes": list(self.common_themes),
            "emotional_patterns": list(self.emotional_patterns),
            "preferred_topics": list(self.preferred_topics),
            "risk_factors": list(self.risk_factors),
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def mood_from_sentiment(positive: float, negative: float) -> int:
    """1-5 mood from sentiment, clamped."""
    return max(1, min(5, round_half_up(1 + 4 * positive - 2 * negative)))


def dominant_emotion(analysis: EmotionalAnalysis) -> EmotionLabel:
    label, score = analysis.emotions.strongest()
    return label if score > DOMINANT_EMOTION_THRESHOLD else EmotionLabel.NEUTRAL


def stress_level(analysis: EmotionalAnalysis) -> float:
    """Weighted fear/anger/sadness load plus stress-indicator count, 0.0-5.0."""
    emotions = analysis.emotions
    load = 0.4 * emotions.fear + 0.3 * emotions.anger + 0.3 * emotions.sadness
    indicators = min(len(analysis.stress_indicators), 5) / 5
    level = round(MAX_STRESS_LEVEL * (0.7 * load + 0.3 * indicators), 1)
    return max(0.0, min(MAX_STRESS_LEVEL, level))


def message_risk_level(analysis: EmotionalAnalysis) -> RiskLevel:
    negative = analysis.sentiment.negative
    indicators = len(analysis.stress_indicators)
    if negative > 0.9 and indicators > 3:
        return RiskLevel.CRISIS
    if negative > 0.7 and indicators > 2:
        return RiskLevel.HIGH
    if negative > 0.5 or indicators > 1:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def detect_themes(text: str, key_phrases: Iterable[str]) -> frozenset:
    """Topic labels found in the text plus the lower-cased key phrases."""
    lowered = normalize_text(text)
    themes = {
        label for label, keywords in THEME_KEYWORDS.items()
        if any(k in lowered for k in keywords)
    }
    themes.update(p.strip().lower()[:MAX_THEME_LENGTH] for p in key_phrases if p.strip())
    return frozenset(themes)


def summarize_message(analysis: EmotionalAnalysis, text: str, now: datetime) -> MessageSummary:
    return MessageSummary(
        timestamp=now,
        emotional_tone=dominant_emotion(analysis),
        key_themes=detect_themes(text, analysis.key_phrases),
        user_mood=mood_from_sentiment(analysis.sentiment.positive, analysis.sentiment.negative),
    )


def derive_prompts(context: ConversationContext) -> List[str]:
    """Deterministic prompts keyed by dominant emotion and recurring themes."""
    prompts = list(EMOTION_PROMPTS.get(context.emotional_state.dominant_emotion, FALLBACK_EMOTION_PROMPTS))
    recent_themes = set()
    for message in context.recent_messages:
        recent_themes.update(message.key_themes)
    for theme, prompt in THEME_PROMPTS:
        if theme in recent_themes:
            prompts.append(prompt)
    return prompts


def _most_frequent(items: Iterable[str], limit: int) -> Tuple[str, ...]:
    return tuple(item for item, _ in Counter(items).most_common(limit))


class EmotionalStateTracker:
    """Owns per-user ConversationContext updates."""

    def __init__(
        self,
        repository: Optional[ContextRepository] = None,
        expiry_policy: Optional[ContextExpiryPolicy] = None,
        clock: Clock = utc_now,
        session_id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        flag_window: timedelta = FLAG_WINDOW,
    ):
        self.repository = repository if repository is not None else InMemoryContextRepository()
        self.expiry_policy = expiry_policy or ContextExpiryPolicy()
        self.clock = clock
        self._new_session_id = session_id_factory
        self.flag_window = flag_window

    def _new_context(self, user_id: str, now: datetime) -> ConversationContext:
        context = ConversationContext(
            user_id=user_id,
            session_id=self._new_session_id(),
            personalized_prompts=list(DEFAULT_PROMPTS),
            created_at=now,
        )
        self.repository.save(context)
        return context

    def _check_integrity(self, user_id: str, context: ConversationContext) -> None:
        if context.user_id != user_id:
            raise InternalStateError(hash_pii(user_id), "context stored under another user")
        if len(context.recent_messages) > RECENT_MESSAGE_CAPACITY:
            raise InternalStateError(hash_pii(user_id), "recent message history over capacity")
        stamps = [m.timestamp for m in context.recent_messages]
        if stamps != sorted(stamps):
            raise InternalStateError(hash_pii(user_id), "recent messages out of order")

    def _load(self, user_id: str, now: datetime) -> ConversationContext:
        """Fetch, validate and session-roll a user's context, creating it lazily."""
        context = self.repository.get(user_id)
        if context is None:
            return self._new_context(user_id, now)

        try:
            self._check_integrity(user_id, context)
        except InternalStateError as e:
            logger.error(
                "CONTEXT_RESET_CORRUPTED",
                extra={"user_id_hash": e.user_id_hash, "reason": e.reason}
            )
            self.repository.delete(user_id)
            return self._new_context(user_id, now)

        if self.expiry_policy.session_expired(context, now):
            previous = context.session_id
            context.start_new_session(self._new_session_id())
            logger.info(
                "SESSION_EXPIRED_NEW_SESSION",
                extra={
                    "user_id_hash": hash_pii(user_id),
                    "previous_session_id": previous,
                    "session_id": context.session_id,
                }
            )
        context.prune_flags(now, self.flag_window)
        return context

    def get_context(self, user_id: str, now: Optional[datetime] = None) -> ConversationContext:
        return self._load(user_id, now or self.clock())

    def record_message(
        self,
        user_id: str,
        analysis: EmotionalAnalysis,
        text: str,
        now: Optional[datetime] = None,
    ) -> ConversationContext:
        """Apply one analysed message to the user's context.

        Args:
            user_id: Raw user identifier
            analysis: Emotion signal for the message
            text: Message text, used for theme detection
            now: Arrival time; defaults to the tracker clock

        Returns:
            The updated context
        """
        now = now or self.clock()
        context = self._load(user_id, now)

        summary = summarize_message(analysis, text, now)
        context.add_message_summary(summary)
        context.emotional_state = EmotionalState(
            current_mood=summary.user_mood,
            dominant_emotion=summary.emotional_tone,
            stress_level=stress_level(analysis),
            risk_level=message_risk_level(analysis),
        )
        context.set_personalized_prompts(derive_prompts(context))
        self.repository.save(context)

        logger.info(
            "EMOTIONAL_STATE_UPDATED",
            extra={
                "user_id_hash": hash_pii(user_id),
                "session_id": context.session_id,
                "mood": summary.user_mood,
                "dominant_emotion": summary.emotional_tone.value,
                "stress_level": context.emotional_state.stress_level,
                "risk_level": context.emotional_state.risk_level.value,
                "analysis_source": analysis.source,
            }
        )
        return context

    def update_context(
        self,
        user_id: str,
        patch: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> ConversationContext:
        """Apply a caller patch of emotional_state fields, prompts or session_id.

        Raises:
            ValidationError: For unknown keys or out-of-range values
        """
        if not isinstance(patch, Mapping):
            raise ValidationError("Context patch must be a mapping")
        unknown = set(patch) - {"emotional_state", "personalized_prompts", "session_id"}
        if unknown:
            raise ValidationError(f"Context fields not patchable: {', '.join(sorted(unknown))}")

        now = now or self.clock()
        context = self._load(user_id, now)

        # Validate the whole patch before touching the live context
        state = context.emotional_state
        if "emotional_state" in patch:
            state = _patched_state(context.emotional_state, patch["emotional_state"])
        prompts: List[str] = []
        if "personalized_prompts" in patch:
            prompts = patch["personalized_prompts"]
            if not isinstance(prompts, (list, tuple)) or not all(isinstance(p, str) for p in prompts):
                raise ValidationError("personalized_prompts must be a list of strings")
        session_id = context.session_id
        if "session_id" in patch:
            session_id = patch["session_id"]
            if not isinstance(session_id, str) or not session_id:
                raise ValidationError("session_id must be a non-empty string")

        context.emotional_state = state
        for prompt in prompts:
            context.add_personalized_prompt(prompt)
        context.session_id = session_id

        self.repository.save(context)
        logger.info(
            "CONTEXT_PATCHED",
            extra={"user_id_hash": hash_pii(user_id), "fields": sorted(patch)}
        )
        return context

    def add_safety_flag(self, user_id: str, flag: SafetyFlag, now: Optional[datetime] = None) -> None:
        now = now or self.clock()
        context = self._load(user_id, now)
        context.add_safety_flag(flag, now, self.flag_window)
        self.repository.save(context)

    def active_flags(self, user_id: str, now: Optional[datetime] = None) -> List[SafetyFlag]:
        now = now or self.clock()
        context = self.repository.get(user_id)
        if context is None:
            return []
        return context.active_flags(now, self.flag_window)

    def clear_context(self, user_id: str) -> bool:
        return self.repository.delete(user_id)

    def evict_idle(self, now: Optional[datetime] = None) -> List[str]:
        return self.repository.evict_idle(self.expiry_policy, now or self.clock())

    def get_personalization_insights(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> PersonalizationInsights:
        now = now or self.clock()
        context = self._load(user_id, now)
        messages = context.recent_messages

        themes = [t for m in messages for t in sorted(m.key_themes)]
        positive_themes = [t for m in messages if m.user_mood >= 4 for t in sorted(m.key_themes)]

        risk_factors = []
        if messages and sum(m.user_mood for m in messages) / len(messages) < 2.5:
            risk_factors.append("consistently low mood")
        if any(f.severity is not Severity.LOW for f in context.active_flags(now, self.flag_window)):
            risk_factors.append("safety concerns detected")
        if context.emotional_state.stress_level > 4:
            risk_factors.append("high stress levels")

        return PersonalizationInsights(
            common_themes=_most_frequent(themes, 5),
            emotional_patterns=_most_frequent((m.emotional_tone.value for m in messages), 3),
            preferred_topics=_most_frequent(positive_themes, 3),
            risk_factors=tuple(risk_factors),
        )


def _patched_state(state: EmotionalState, fields: Any) -> EmotionalState:
    if not isinstance(fields, Mapping):
        raise ValidationError("emotional_state patch must be a mapping")
    unknown = set(fields) - set(PATCHABLE_STATE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown emotional_state fields: {', '.join(sorted(unknown))}")

    changes: Dict[str, Any] = {}
    try:
        if "current_mood" in fields:
            mood = fields["current_mood"]
            if isinstance(mood, bool) or not isinstance(mood, int):
                raise ValueError("current_mood must be an integer")
            changes["current_mood"] = mood
        if "dominant_emotion" in fields:
            changes["dominant_emotion"] = EmotionLabel(fields["dominant_emotion"])
        if "stress_level" in fields:
            changes["stress_level"] = float(fields["stress_level"])
        if "risk_level" in fields:
            changes["risk_level"] = RiskLevel(fields["risk_level"])
        return replace(state, **changes)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid emotional_state patch: {e}") from e
