"""Safety monitor: the operations exposed to the surrounding application.

One coroutine per inbound message. Emotion and content-safety signals are
gathered concurrently and joined before any per-user state changes; state
changes for one user are applied in arrival order through UserSerializer.

handle_crisis_detection() and assess_risk_level() never raise once input
has been validated. Any internal failure still produces a conservative
response carrying static emergency resources.
"""
import asyncio
import logging
import os
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from mindguard.shared.database import RepositoryError
from mindguard.shared.errors import ValidationError
from mindguard.shared.models import (
    CheckInTrigger,
    CrisisResult,
    CrisisResponse,
    EmergencyResource,
    ModerationResult,
    RiskAssessment,
    RiskLevel,
    SafetyResult,
)
from mindguard.shared.utils import Clock, UserSerializer, ensure_pii_salt, hash_pii, utc_now
from mindguard.services.checkin_service import (
    InMemoryMessageHistoryStore,
    MessageHistoryStore,
    PatternAnalyzer,
)
from mindguard.services.observer_service import (
    ContextExpiryPolicy,
    EmotionAnalyzer,
    EmotionalStateTracker,
    PersonalizationInsights,
    TransformersEmotionClient,
)
from mindguard.services.safety_service import (
    AzureContentSafetyClient,
    ContentSafetyConfig,
    ContentSafetyService,
    CrisisDetector,
    RiskThresholds,
    SafetyConfig,
    get_emergency_resources,
    load_policy,
)
from .escalation import EscalationEngine, RiskAssessor, RiskSignals
from .event_log import HistoryRiskAssessor, SafetyEventLog
from .follow_up_publisher import FollowUpEvent, FollowUpPublisher

logger = logging.getLogger(__name__)

SENTIMENT_SOURCE = "sentiment"
CONTENT_SAFETY_SOURCE = "content_safety"


def _validate_user_id(user_id: Any) -> None:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("user_id must be a non-empty string")


def _validate_text(text: Any) -> None:
    if not isinstance(text, str):
        raise ValidationError(f"text must be a string, got {type(text).__name__}")


class SafetyMonitor:
    """Per-message safety pipeline over injected collaborators."""

    def __init__(
        self,
        config: Optional[SafetyConfig] = None,
        thresholds: Optional[RiskThresholds] = None,
        detector: Optional[CrisisDetector] = None,
        emotion_analyzer: Optional[EmotionAnalyzer] = None,
        content_safety: Optional[ContentSafetyService] = None,
        tracker: Optional[EmotionalStateTracker] = None,
        event_log: Optional[SafetyEventLog] = None,
        history_store: Optional[MessageHistoryStore] = None,
        publisher: Optional[FollowUpPublisher] = None,
        clock: Clock = utc_now,
    ):
        ensure_pii_salt()

        self.config = config or SafetyConfig()
        self.thresholds = thresholds or RiskThresholds()
        self.clock = clock
        self.flag_window = timedelta(hours=self.config.flag_window_hours)

        self.detector = detector or CrisisDetector(load_policy(self.config.policy_path))
        self.emotion_analyzer = emotion_analyzer or EmotionAnalyzer(None, self.config)
        self.content_safety = content_safety or ContentSafetyService(None, self.config, self.thresholds)
        self.tracker = tracker or EmotionalStateTracker(
            expiry_policy=ContextExpiryPolicy(
                session_ttl=timedelta(hours=self.config.session_ttl_hours),
                idle_ttl=timedelta(days=self.config.idle_eviction_days),
            ),
            clock=clock,
            flag_window=self.flag_window,
        )
        self.event_log = event_log or SafetyEventLog(self.config.event_log_capacity, clock=clock)
        self.history_store = history_store or InMemoryMessageHistoryStore()
        self.pattern_analyzer = PatternAnalyzer(
            self.history_store, clock=clock, window_days=self.config.pattern_window_days
        )
        self.history_assessor = HistoryRiskAssessor(
            self.event_log, self.detector, self.thresholds, window=self.flag_window
        )
        self.risk_assessor = RiskAssessor(self.thresholds)
        self.escalation = EscalationEngine(self.thresholds)
        self.publisher = publisher

        self.serializer = UserSerializer()
        self._background: Set[asyncio.Task] = set()
        self._latest_triggers: Dict[str, List[CheckInTrigger]] = {}

        logger.info(
            "SAFETY_MONITOR_INITIALIZED",
            extra={
                "policy_version": self.detector.policy.version,
                "emotion_client": self.emotion_analyzer.configured,
                "content_safety": self.content_safety.configured,
                "follow_up_publisher": publisher is not None,
            }
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> "SafetyMonitor":
        """Build a monitor from environment configuration.

        Content safety is enabled when AZURE_CONTENT_SAFETY_ENDPOINT and
        AZURE_CONTENT_SAFETY_KEY are set; follow-up publishing when
        KINESIS_STREAM_NAME is set. MINDGUARD_EMOTION_BACKEND=transformers
        switches emotion analysis from keywords to local transformer models.
        """
        config = SafetyConfig.from_env()
        emotion_client = None
        if os.getenv("MINDGUARD_EMOTION_BACKEND", "").lower() == "transformers":
            emotion_client = TransformersEmotionClient(device=os.getenv("MINDGUARD_EMOTION_DEVICE", "cpu"))
        content_config = ContentSafetyConfig.from_env()
        client = AzureContentSafetyClient(content_config) if content_config else None
        publisher = FollowUpPublisher.from_env()
        kwargs: Dict[str, Any] = {
            "config": config,
            "emotion_analyzer": EmotionAnalyzer(emotion_client, config),
            "content_safety": ContentSafetyService(client, config),
            "publisher": publisher if publisher.enabled else None,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    async def check_content(self, text: str) -> SafetyResult:
        """Content-safety verdict; unavailable collaborators yield a never-safe verdict."""
        _validate_text(text)
        return await self.content_safety.check(text)

    async def moderate_content(self, text: str) -> ModerationResult:
        _validate_text(text)
        return await self.content_safety.moderate(text)

    async def _content_signal(self, text: str) -> Optional[SafetyResult]:
        if not self.content_safety.configured:
            return None
        return await self.content_safety.check(text)

    async def handle_crisis_detection(self, user_id: str, text: str) -> CrisisResponse:
        """Assess one message and return the escalation response.

        Args:
            user_id: Raw user identifier
            text: Message text

        Returns:
            CrisisResponse; never empty, always carrying resources

        Raises:
            ValidationError: If user_id or text is malformed
        """
        _validate_user_id(user_id)
        _validate_text(text)
        user_id_hash = hash_pii(user_id)

        reservation = self.serializer.reserve(user_id)
        lexical: Optional[CrisisResult] = None
        try:
            try:
                lexical = self.detector.detect(text)
                signals = self.detector.analyze_signals(text)
                analysis, content = await asyncio.gather(
                    self.emotion_analyzer.analyze(text),
                    self._content_signal(text),
                )

                degraded: List[str] = []
                if analysis.is_fallback:
                    degraded.append(SENTIMENT_SOURCE)
                if content is not None and not content.available:
                    degraded.append(CONTENT_SAFETY_SOURCE)

                async with reservation:
                    now = self.clock()
                    context = self.tracker.record_message(user_id, analysis, text, now)
                    result = self.risk_assessor.assess(RiskSignals(
                        lexical=lexical,
                        signals=signals,
                        content=content,
                        emotional_state=context.emotional_state,
                        recent_flags=tuple(self.event_log.recent(user_id, self.flag_window, now)),
                        degraded_sources=tuple(degraded),
                    ))
                    response = self.escalation.build_response(result)
                    flag = self.escalation.build_flag(result, content, now)
                    self.event_log.append(user_id, flag)
                    session_id = context.session_id
                    self._record_bookkeeping(user_id, user_id_hash, flag, context, now)
            except Exception as e:
                logger.critical(
                    "CRISIS_DETECTION_FAILED",
                    extra={
                        "user_id_hash": user_id_hash,
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "action": "CONSERVATIVE_RESPONSE_RETURNED",
                    }
                )
                response = self.escalation.fallback_response(lexical)
                session_id = ""
        finally:
            reservation.release()

        self._log_outcome(user_id_hash, response)
        self._spawn(self._after_response(user_id, response, session_id))
        return response

    def _record_bookkeeping(self, user_id, user_id_hash, flag, context, now) -> None:
        """Context flag and summary history writes; failures never change the decision."""
        try:
            self.tracker.add_safety_flag(user_id, flag, now)
            self.history_store.record_summary(user_id, context.recent_messages[-1])
        except Exception as e:
            logger.error(
                "POST_DECISION_WRITE_FAILED",
                extra={
                    "user_id_hash": user_id_hash,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )

    def _log_outcome(self, user_id_hash: str, response: CrisisResponse) -> None:
        extra = {
            "user_id_hash": user_id_hash,
            "risk_level": response.risk_level.value,
            "immediate": response.immediate,
            "follow_up_required": response.follow_up_required,
            "indicator_count": len(response.indicators),
        }
        if response.risk_level is RiskLevel.CRISIS:
            logger.critical("CRISIS_DETECTED", extra=extra)
        elif response.follow_up_required:
            logger.warning("RISK_ESCALATED", extra=extra)
        else:
            logger.info("MESSAGE_ASSESSED", extra=extra)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _after_response(self, user_id: str, response: CrisisResponse, session_id: str) -> None:
        """Follow-up publishing and pattern re-evaluation, off the response path."""
        loop = asyncio.get_running_loop()
        if response.follow_up_required and self.publisher is not None:
            event = FollowUpEvent.from_response(response, hash_pii(user_id), session_id)
            await loop.run_in_executor(None, self.publisher.publish, event)

        try:
            self._latest_triggers[user_id] = self.pattern_analyzer.analyze_user_patterns(user_id)
        except Exception as e:
            logger.error(
                "PATTERN_REEVALUATION_FAILED",
                extra={"user_id_hash": hash_pii(user_id), "error": str(e)}
            )

    async def assess_risk_level(self, user_id: str, recent_activity: Sequence[str]) -> RiskAssessment:
        """History-based assessment over the last day of events and recent messages."""
        _validate_user_id(user_id)
        if isinstance(recent_activity, str) or not all(isinstance(t, str) for t in recent_activity):
            raise ValidationError("recent_activity must be a list of strings")

        reservation = self.serializer.reserve(user_id)
        try:
            async with reservation:
                return self.history_assessor.assess(user_id, recent_activity, self.clock())
        finally:
            reservation.release()

    async def get_conversation_context(self, user_id: str) -> Dict[str, Any]:
        _validate_user_id(user_id)
        reservation = self.serializer.reserve(user_id)
        try:
            async with reservation:
                now = self.clock()
                context = self.tracker.get_context(user_id, now)
                return context.to_dict(now, self.flag_window)
        finally:
            reservation.release()

    async def update_conversation_context(self, user_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply a caller patch; raises ValidationError for unknown or invalid fields."""
        _validate_user_id(user_id)
        reservation = self.serializer.reserve(user_id)
        try:
            async with reservation:
                now = self.clock()
                context = self.tracker.update_context(user_id, patch, now)
                return context.to_dict(now, self.flag_window)
        finally:
            reservation.release()

    async def clear_context(self, user_id: str) -> bool:
        """Drop a user's conversation context; the event log is kept."""
        _validate_user_id(user_id)
        reservation = self.serializer.reserve(user_id)
        try:
            async with reservation:
                return self.tracker.clear_context(user_id)
        finally:
            reservation.release()

    async def get_personalization_insights(self, user_id: str) -> PersonalizationInsights:
        _validate_user_id(user_id)
        reservation = self.serializer.reserve(user_id)
        try:
            async with reservation:
                return self.tracker.get_personalization_insights(user_id, self.clock())
        finally:
            reservation.release()

    async def analyze_user_patterns(self, user_id: str) -> List[CheckInTrigger]:
        _validate_user_id(user_id)
        triggers = self.pattern_analyzer.analyze_user_patterns(user_id)
        self._latest_triggers[user_id] = triggers
        return triggers

    def latest_triggers(self, user_id: str) -> List[CheckInTrigger]:
        """Triggers from the most recent background re-evaluation."""
        return list(self._latest_triggers.get(user_id, ()))

    def get_emergency_resources(self, location: Optional[str] = None) -> Tuple[EmergencyResource, ...]:
        return get_emergency_resources(location)

    def evict_idle_contexts(self) -> List[str]:
        """Drop per-user state that has gone idle and summaries past retention."""
        now = self.clock()
        evicted = self.tracker.evict_idle(now)
        idle_cutoff = now - timedelta(days=self.config.idle_eviction_days)
        for user_id in evicted:
            self._latest_triggers.pop(user_id, None)
        self.event_log.evict_idle(idle_cutoff)
        try:
            self.history_store.prune_before(now - timedelta(days=self.config.history_retention_days))
        except RepositoryError as e:
            logger.error("MESSAGE_HISTORY_PRUNE_FAILED", extra={"error": str(e)})
        return evicted

    async def drain(self) -> None:
        """Wait for background follow-up and pattern tasks to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.content_safety.close()
        logger.info("SAFETY_MONITOR_CLOSED")
