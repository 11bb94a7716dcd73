"""Tests for escalation precedence, floors and response payloads.

Escalation must be monotonic: adding a signal can raise the level but never
lower it, and an unavailable signal source is treated as a risk signal.
"""
import pytest
from datetime import datetime, timezone

from mindguard.shared.models import (
    CategorySeverity,
    ContentCategory,
    CrisisSignals,
    EmotionalState,
    RiskLevel,
    SafetyFlag,
    SafetyFlagType,
    SafetyResult,
    Severity,
)
from mindguard.shared.utils import configure_pii_salt
from mindguard.services.safety_service.content_safety import summarize, unavailable_result
from mindguard.services.safety_service.detector import CrisisDetector
from mindguard.services.crisis_engine.escalation import (
    DEGRADED_ACTIONS,
    FALLBACK_MESSAGE,
    RESPONSE_MESSAGES,
    EscalationEngine,
    RiskAssessor,
    RiskSignals,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="module")
def detector():
    return CrisisDetector()


@pytest.fixture
def assessor():
    return RiskAssessor()


@pytest.fixture
def engine():
    return EscalationEngine()


def risk_for(detector, text, **kwargs):
    return RiskSignals(lexical=detector.detect(text), signals=detector.analyze_signals(text), **kwargs)


def content(**severities):
    return summarize([CategorySeverity(ContentCategory(k), v) for k, v in severities.items()])


class TestPrecedence:

    def test_critical_keyword_is_immediate_crisis(self, detector, assessor):
        result = assessor.assess(risk_for(detector, "I want to kill myself tonight"))

        assert result.risk_level is RiskLevel.CRISIS
        assert result.immediate is True
        assert result.crisis_detected is True
        assert any(r.is_always_available for r in result.emergency_resources)

    def test_self_harm_category_severity_six_is_crisis(self, detector, assessor):
        risk = risk_for(detector, "just a normal day", content=content(self_harm=6))

        level, immediate = assessor.precedence_level(risk)

        assert level is RiskLevel.CRISIS
        assert immediate is True

    def test_ideation_with_immediacy_is_crisis(self, assessor):
        risk = RiskSignals(
            lexical=CrisisDetector().detect("nothing here"),
            signals=CrisisSignals(suicidal_ideation=True, immediate_risk=True),
        )

        assert assessor.precedence_level(risk) == (RiskLevel.CRISIS, False)

    def test_ideation_alone_is_high(self, assessor, detector):
        risk = RiskSignals(
            lexical=detector.detect("nothing here"),
            signals=CrisisSignals(suicidal_ideation=True),
        )

        result = assessor.assess(risk)

        assert result.risk_level is RiskLevel.HIGH
        assert result.crisis_detected is True

    def test_external_crisis_is_high(self, detector, assessor):
        verdict = SafetyResult(is_safe=False, risk_level=RiskLevel.CRISIS)

        assert assessor.precedence_level(risk_for(detector, "fine", content=verdict))[0] is RiskLevel.HIGH

    def test_external_high_is_medium(self, detector, assessor):
        risk = risk_for(detector, "fine", content=content(violence=6))

        assert assessor.precedence_level(risk)[0] is RiskLevel.MEDIUM

    def test_hopelessness_alone_is_medium(self, detector, assessor):
        risk = risk_for(detector, "there is no point")

        assert assessor.precedence_level(risk) == (RiskLevel.MEDIUM, False)

    def test_nothing_is_low(self, detector, assessor):
        result = assessor.assess(risk_for(detector, "I had a great day, feeling happy"))

        assert result.risk_level is RiskLevel.LOW
        assert result.crisis_detected is False
        assert result.immediate is False
        assert result.emergency_resources


class TestMaxWins:

    def test_high_and_medium_signals_give_high(self, detector, assessor):
        risk = risk_for(detector, "life is not worth living, I feel trapped")

        assert assessor.assess(risk).risk_level is RiskLevel.HIGH

    def test_high_keyword_tier_is_never_low(self, detector, assessor):
        result = assessor.assess(risk_for(detector, "I keep cutting"))

        assert result.crisis_detected is True
        assert result.risk_level is RiskLevel.HIGH

    def test_tracked_high_state_floors_at_medium(self, detector, assessor):
        state = EmotionalState(current_mood=1, stress_level=4.0, risk_level=RiskLevel.HIGH)

        result = assessor.assess(risk_for(detector, "ok", emotional_state=state))

        assert result.risk_level is RiskLevel.MEDIUM

    def test_recent_critical_flag_floors_at_medium(self, detector, assessor):
        flag = SafetyFlag(
            flag_type=SafetyFlagType.CRISIS_INDICATOR,
            severity=Severity.CRITICAL,
            context="Crisis detection: crisis",
            action_taken="Crisis response initiated",
            timestamp=NOW,
        )

        result = assessor.assess(risk_for(detector, "ok", recent_flags=(flag,)))

        assert result.risk_level is RiskLevel.MEDIUM


class TestDegradedSignals:

    def test_unavailable_content_safety_is_at_least_medium(self, detector, assessor, engine):
        risk = risk_for(
            detector, "I had a great day",
            content=unavailable_result(),
            degraded_sources=("content_safety",),
        )

        result = assessor.assess(risk)
        response = engine.build_response(result)

        assert result.risk_level is RiskLevel.MEDIUM
        assert result.recommended_actions[:3] == DEGRADED_ACTIONS
        assert "content_safety analysis unavailable - manual review required" in result.indicators
        assert response.follow_up_required is True
        assert response.resources

    def test_unavailable_verdict_adds_no_external_level(self, detector, assessor):
        risk = risk_for(detector, "fine", content=unavailable_result())

        assert assessor.precedence_level(risk)[0] is RiskLevel.LOW

    def test_degraded_does_not_lower_crisis(self, detector, assessor):
        risk = risk_for(detector, "I want to die", degraded_sources=("sentiment",))

        result = assessor.assess(risk)

        assert result.risk_level is RiskLevel.CRISIS
        assert result.recommended_actions[0] == "IMMEDIATE ACTION REQUIRED"


class TestIndicators:

    def test_lexical_then_signals_then_categories(self, detector, assessor):
        risk = risk_for(detector, "I feel hopeless", content=content(hate=4, self_harm=2))

        result = assessor.assess(risk)

        assert result.indicators == (
            'High risk indicator: "hopeless"',
            "Expressions of hopelessness",
            "hate content detected (severity: 4)",
        )


class TestEscalationEngine:

    def test_crisis_response(self, detector, assessor, engine):
        response = engine.build_response(assessor.assess(risk_for(detector, "suicide")))

        assert response.immediate is True
        assert response.follow_up_required is True
        assert response.response_message == RESPONSE_MESSAGES[RiskLevel.CRISIS]

    def test_low_response_needs_no_follow_up(self, detector, assessor, engine):
        response = engine.build_response(assessor.assess(risk_for(detector, "hello")))

        assert response.risk_level is RiskLevel.LOW
        assert response.follow_up_required is False
        assert response.immediate is False

    def test_fallback_response(self, engine):
        response = engine.fallback_response()

        assert response.risk_level is RiskLevel.MEDIUM
        assert response.crisis_detected is True
        assert response.follow_up_required is True
        assert response.response_message == FALLBACK_MESSAGE
        assert any(r.is_always_available for r in response.resources)

    def test_fallback_keeps_critical_keyword_as_crisis(self, detector, engine):
        response = engine.fallback_response(detector.detect("I want to kill myself tonight"))

        assert response.risk_level is RiskLevel.CRISIS
        assert response.immediate is True
        assert response.response_message == RESPONSE_MESSAGES[RiskLevel.CRISIS]
        assert any("kill myself" in i for i in response.indicators)
        assert response.indicators[-1] == "Analysis unavailable - manual review required"

    def test_fallback_floors_at_high_tier(self, detector, engine):
        response = engine.fallback_response(detector.detect("I feel worthless"))

        assert response.risk_level is RiskLevel.HIGH
        assert response.immediate is False

    def test_fallback_never_below_medium(self, detector, engine):
        response = engine.fallback_response(detector.detect("hello"))

        assert response.risk_level is RiskLevel.MEDIUM

    def test_crisis_flag(self, detector, assessor, engine):
        result = assessor.assess(risk_for(detector, "end my life"))

        flag = engine.build_flag(result, None, NOW)

        assert flag.flag_type is SafetyFlagType.CRISIS_INDICATOR
        assert flag.severity is Severity.CRITICAL
        assert flag.context == "Crisis detection: crisis"
        assert flag.action_taken == "Crisis response initiated"
        assert flag.timestamp == NOW

    def test_content_flag(self, detector, assessor, engine):
        verdict = content(violence=4)
        result = assessor.assess(risk_for(detector, "ok", content=verdict))

        flag = engine.build_flag(result, verdict, NOW)

        assert flag.flag_type is SafetyFlagType.CONTENT_FLAGGED
        assert flag.severity is Severity.LOW

    def test_degraded_flag_context(self, detector, assessor, engine):
        result = assessor.assess(risk_for(detector, "ok", degraded_sources=("sentiment",)))

        flag = engine.build_flag(result, None, NOW)

        assert flag.flag_type is SafetyFlagType.RISK_PATTERN
        assert flag.context == "Crisis detection: medium (degraded: sentiment)"
        assert flag.action_taken == "Support resources offered"
