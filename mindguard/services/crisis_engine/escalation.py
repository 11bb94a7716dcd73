"""Risk assessor and escalation engine.

Combines the lexical result, crisis signals, content-safety categories,
tracked emotional state and the last day of safety events into one ordered
decision. Levels are combined max-wins; they are never averaged.

Precedence, evaluated top to bottom:
1. Critical-tier keyword or self-harm category severity >= 6 -> crisis, immediate
2. Suicidal ideation with immediacy language -> crisis
3. Suicidal ideation, self-harm with severe distress, or external crisis -> high
4. Self-harm, severe distress, hopelessness, or external high -> medium
5. Otherwise low

An unavailable signal source is itself a risk signal: every degraded source
forces at least medium with follow-up.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from mindguard.shared.models import (
    ContentCategory,
    CrisisDetectionResult,
    CrisisResponse,
    CrisisResult,
    CrisisSignals,
    DetectionLevel,
    EmotionalState,
    RiskLevel,
    SafetyFlag,
    SafetyFlagType,
    SafetyResult,
    Severity,
)
from mindguard.services.safety_service.config import RiskThresholds
from mindguard.services.safety_service.resources import resources_for_level

logger = logging.getLogger(__name__)

RECOMMENDED_ACTIONS = {
    RiskLevel.CRISIS: (
        "IMMEDIATE ACTION REQUIRED",
        "If you are in immediate danger, call 911 now",
        "Call the 988 Suicide & Crisis Lifeline: 988 (available 24/7)",
        "Go to your nearest emergency room",
        "Contact a trusted friend or family member immediately",
        "Do not leave yourself alone",
    ),
    RiskLevel.HIGH: (
        "Contact the 988 Suicide & Crisis Lifeline: 988",
        "Reach out to your campus counseling center immediately",
        "Contact a mental health professional",
        "Inform a trusted friend or family member about how you're feeling",
        "Consider going to an emergency room if feelings worsen",
    ),
    RiskLevel.MEDIUM: (
        "Schedule an appointment with a counselor or therapist",
        "Contact your campus mental health services",
        "Reach out to a trusted friend, family member, or mentor",
        "Consider calling a mental health helpline for support",
        "Practice immediate self-care and safety planning",
    ),
    RiskLevel.LOW: (
        "Continue monitoring your mental health",
        "Consider talking to someone you trust",
        "Practice self-care strategies",
    ),
}

DEGRADED_ACTIONS = (
    "If you are in immediate danger, call 911",
    "Contact the 988 Suicide & Crisis Lifeline: 988",
    "Reach out to a trusted person for support",
)

_CONCERN = "I'm very concerned about what you've shared with me. "

RESPONSE_MESSAGES = {
    RiskLevel.CRISIS: _CONCERN + (
        "Your safety is the most important thing right now. Please reach out for "
        "immediate help using the resources below. You don't have to go through this "
        "alone, and there are people who want to help you."
    ),
    RiskLevel.HIGH: _CONCERN + (
        "It sounds like you're going through an incredibly difficult time. Please "
        "consider reaching out for professional support - you deserve help and care. "
        "The resources below can provide immediate assistance."
    ),
    RiskLevel.MEDIUM: _CONCERN + (
        "I can hear that you're struggling, and I want you to know that support is "
        "available. Consider talking to someone you trust or reaching out to one of "
        "the resources below."
    ),
    RiskLevel.LOW: (
        "I'm here to listen and support you. If you're having thoughts of hurting "
        "yourself or others, please reach out for help immediately."
    ),
}

FALLBACK_MESSAGE = (
    "I'm concerned about your wellbeing and want to make sure you have access to "
    "support. If you're having thoughts of hurting yourself or are in crisis, please "
    "reach out for help immediately. Your life has value and there are people who "
    "want to help you."
)

LEXICAL_FLOOR = {
    DetectionLevel.CRITICAL: RiskLevel.CRISIS,
    DetectionLevel.HIGH: RiskLevel.HIGH,
    DetectionLevel.MEDIUM: RiskLevel.MEDIUM,
    DetectionLevel.NONE: RiskLevel.LOW,
}

ACTION_TAKEN = {
    RiskLevel.CRISIS: "Crisis response initiated",
    RiskLevel.HIGH: "Crisis response initiated",
    RiskLevel.MEDIUM: "Support resources offered",
    RiskLevel.LOW: "Logged for monitoring",
}


@dataclass(frozen=True)
class RiskSignals:
    """Everything known about one message at decision time."""
    lexical: CrisisResult
    signals: CrisisSignals
    content: Optional[SafetyResult] = None
    emotional_state: Optional[EmotionalState] = None
    recent_flags: Tuple[SafetyFlag, ...] = ()
    degraded_sources: Tuple[str, ...] = ()


class RiskAssessor:
    """Ordered escalation decision over a RiskSignals bundle."""

    def __init__(self, thresholds: Optional[RiskThresholds] = None):
        self.thresholds = thresholds or RiskThresholds()

    def _content_severity(self, content: Optional[SafetyResult], category: ContentCategory) -> int:
        if content is None or not content.available:
            return 0
        return content.severity_of(category)

    def _external_level(self, content: Optional[SafetyResult]) -> RiskLevel:
        if content is None or not content.available:
            return RiskLevel.LOW
        return content.risk_level

    def precedence_level(self, risk: RiskSignals) -> Tuple[RiskLevel, bool]:
        """Level from the precedence rules, and whether it is immediate."""
        signals = risk.signals
        external = self._external_level(risk.content)
        self_harm_severity = self._content_severity(risk.content, ContentCategory.SELF_HARM)

        if (risk.lexical.level is DetectionLevel.CRITICAL
                or self_harm_severity >= self.thresholds.self_harm_crisis_severity):
            return RiskLevel.CRISIS, True
        if signals.suicidal_ideation and signals.immediate_risk:
            return RiskLevel.CRISIS, False
        if (signals.suicidal_ideation
                or (signals.self_harm_risk and signals.severe_distress)
                or external is RiskLevel.CRISIS):
            return RiskLevel.HIGH, False
        if (signals.self_harm_risk or signals.severe_distress or signals.hopelessness
                or external is RiskLevel.HIGH):
            return RiskLevel.MEDIUM, False
        return RiskLevel.LOW, False

    def _contextual_floor(self, risk: RiskSignals) -> RiskLevel:
        state = risk.emotional_state
        if state is not None and state.risk_level in (RiskLevel.HIGH, RiskLevel.CRISIS):
            return RiskLevel.MEDIUM
        if any(f.severity is Severity.CRITICAL for f in risk.recent_flags):
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def _indicators(self, risk: RiskSignals) -> List[str]:
        indicators = list(risk.lexical.indicators)
        for indicator in risk.signals.indicators():
            if indicator not in indicators:
                indicators.append(indicator)
        if risk.content is not None and risk.content.available:
            for category in risk.content.categories:
                if category.severity >= self.thresholds.category_flag_severity:
                    indicators.append(
                        f"{category.category.value} content detected (severity: {category.severity})"
                    )
        for source in risk.degraded_sources:
            indicators.append(f"{source} analysis unavailable - manual review required")
        return indicators

    def assess(self, risk: RiskSignals) -> CrisisDetectionResult:
        level, immediate = self.precedence_level(risk)

        # A high-tier keyword match is reported as a crisis, never as low risk
        if risk.lexical.level is DetectionLevel.HIGH:
            level = RiskLevel.highest(level, RiskLevel.HIGH)
        level = RiskLevel.highest(level, self._contextual_floor(risk))
        if risk.degraded_sources:
            level = RiskLevel.highest(level, RiskLevel.MEDIUM)
            logger.warning(
                "ESCALATION_WITH_DEGRADED_SIGNALS",
                extra={"sources": list(risk.degraded_sources), "risk_level": level.value}
            )

        signals = risk.signals
        crisis_detected = (
            risk.lexical.is_crisis
            or self._external_level(risk.content) is RiskLevel.CRISIS
            or signals.suicidal_ideation
            or (signals.self_harm_risk and signals.immediate_risk)
            or level is RiskLevel.CRISIS
        )

        actions = RECOMMENDED_ACTIONS[level]
        if risk.degraded_sources and level is RiskLevel.MEDIUM:
            actions = DEGRADED_ACTIONS + actions

        return CrisisDetectionResult(
            crisis_detected=crisis_detected,
            risk_level=level,
            immediate=immediate or level is RiskLevel.CRISIS,
            indicators=tuple(self._indicators(risk)),
            recommended_actions=actions,
            emergency_resources=resources_for_level(level),
            degraded_sources=tuple(risk.degraded_sources),
        )


class EscalationEngine:
    """Turns a detection result into the response payload and its safety flag."""

    def __init__(self, thresholds: Optional[RiskThresholds] = None):
        self.thresholds = thresholds or RiskThresholds()

    def build_response(self, result: CrisisDetectionResult) -> CrisisResponse:
        level = result.risk_level
        follow_up = level in (RiskLevel.HIGH, RiskLevel.CRISIS) or result.degraded
        resources = result.emergency_resources or resources_for_level(level)
        return CrisisResponse(
            risk_level=level,
            immediate=level is RiskLevel.CRISIS,
            crisis_detected=result.crisis_detected,
            resources=resources,
            response_message=RESPONSE_MESSAGES[level],
            follow_up_required=follow_up,
            indicators=result.indicators,
        )

    def fallback_response(self, lexical: Optional[CrisisResult] = None) -> CrisisResponse:
        """Conservative response when the pipeline itself failed.

        Medium at minimum; floored at whatever the lexical tiers had already
        found when the failure happened.
        """
        level = RiskLevel.MEDIUM
        indicators: Tuple[str, ...] = ()
        if lexical is not None:
            level = RiskLevel.highest(level, LEXICAL_FLOOR[lexical.level])
            indicators = lexical.indicators
        return CrisisResponse(
            risk_level=level,
            immediate=level is RiskLevel.CRISIS,
            crisis_detected=True,
            resources=resources_for_level(RiskLevel.highest(level, RiskLevel.HIGH)),
            response_message=RESPONSE_MESSAGES[level] if level is RiskLevel.CRISIS else FALLBACK_MESSAGE,
            follow_up_required=True,
            indicators=indicators + ("Analysis unavailable - manual review required",),
        )

    def flag_type(
        self,
        result: CrisisDetectionResult,
        content: Optional[SafetyResult] = None,
    ) -> SafetyFlagType:
        if result.crisis_detected:
            return SafetyFlagType.CRISIS_INDICATOR
        if (content is not None and content.available
                and content.max_severity >= self.thresholds.category_flag_severity):
            return SafetyFlagType.CONTENT_FLAGGED
        return SafetyFlagType.RISK_PATTERN

    def build_flag(
        self,
        result: CrisisDetectionResult,
        content: Optional[SafetyResult],
        timestamp: datetime,
    ) -> SafetyFlag:
        level = result.risk_level
        context = f"Crisis detection: {level.value}"
        if result.degraded:
            context += f" (degraded: {', '.join(result.degraded_sources)})"
        return SafetyFlag(
            flag_type=self.flag_type(result, content),
            severity=Severity.from_risk_level(level),
            context=context,
            action_taken=ACTION_TAKEN[level],
            timestamp=timestamp,
        )

