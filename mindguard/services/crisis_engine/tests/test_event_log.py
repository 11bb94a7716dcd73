"""Tests for the safety event log and history-based risk assessment."""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from mindguard.shared.database import RepositoryError
from mindguard.shared.models import RiskLevel, SafetyFlag, SafetyFlagType, Severity
from mindguard.shared.utils import configure_pii_salt, hash_pii
from mindguard.services.crisis_engine.event_log import (
    FALLBACK_ASSESSMENT,
    HistoryRiskAssessor,
    PostgresSafetyEventStore,
    SafetyEventLog,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def event(severity=Severity.LOW, hours_ago=1, context="Crisis detection: low"):
    return SafetyFlag(
        flag_type=SafetyFlagType.RISK_PATTERN,
        severity=severity,
        context=context,
        action_taken="Logged for monitoring",
        timestamp=NOW - timedelta(hours=hours_ago),
    )


@pytest.fixture
def log():
    return SafetyEventLog(clock=lambda: NOW)


@pytest.fixture
def assessor(log):
    return HistoryRiskAssessor(log)


class TestSafetyEventLog:

    def test_keeps_only_the_most_recent_fifty(self, log):
        for i in range(51):
            log.append("user", event(context=f"event {i}", hours_ago=0))

        events = log.events("user")
        assert len(events) == 50
        assert events[0].context == "event 1"
        assert events[-1].context == "event 50"

    def test_users_are_isolated(self, log):
        log.append("a", event())

        assert log.events("b") == []

    def test_recent_applies_window(self, log):
        log.append("user", event(hours_ago=30))
        log.append("user", event(hours_ago=2))

        assert len(log.recent("user")) == 1
        assert len(log.recent("user", window=timedelta(hours=48))) == 2

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            SafetyEventLog(capacity=0)

    def test_writes_through_to_store_with_hashed_id(self):
        store = MagicMock()
        store.load_recent.return_value = []
        log = SafetyEventLog(store=store)
        flagged = event()

        log.append("user", flagged)

        store.append.assert_called_once_with(hash_pii("user"), flagged)

    def test_hydrates_from_store_on_first_access(self):
        store = MagicMock()
        store.load_recent.return_value = [event(Severity.HIGH)]
        log = SafetyEventLog(capacity=10, store=store)

        assert log.events("user")[0].severity is Severity.HIGH
        store.load_recent.assert_called_once_with(hash_pii("user"), 10)

    def test_store_failures_do_not_lose_events(self):
        store = MagicMock()
        store.load_recent.side_effect = RepositoryError("safety_events", "down")
        store.append.side_effect = RepositoryError("safety_events", "down")
        log = SafetyEventLog(store=store)

        log.append("user", event())

        assert len(log.events("user")) == 1

    def test_reads_do_not_create_entries(self, log):
        assert log.recent("nobody") == []
        assert log.events("nobody") == []

        assert log._events == {}

    def test_evict_drops_user(self, log):
        log.append("user", event())

        assert log.evict("user") is True
        assert log.evict("user") is False
        assert log.events("user") == []

    def test_evict_idle_keeps_active_users(self, log):
        log.append("idle", event(hours_ago=24 * 8))
        log.append("active", event(hours_ago=1))

        evicted = log.evict_idle(NOW - timedelta(days=7))

        assert evicted == ["idle"]
        assert log.events("idle") == []
        assert len(log.events("active")) == 1


class TestPostgresSafetyEventStore:

    def test_row_mapping(self):
        store = PostgresSafetyEventStore(MagicMock())
        flagged = event(Severity.CRITICAL)

        params = store._entity_to_params(flagged)
        row = tuple(params[c] for c in store.columns)

        assert params["severity"] == "critical"
        assert store._row_to_entity(row) == flagged


class TestHistoryRiskAssessor:

    def test_no_history_is_low(self, assessor):
        result = assessor.assess("user", [], NOW)

        assert result.risk_level is RiskLevel.LOW
        assert result.monitoring_required is False
        assert result.factors == ()

    def test_critical_event_is_crisis(self, log, assessor):
        log.append("user", event(Severity.CRITICAL))

        result = assessor.assess("user", [], NOW)

        assert result.risk_level is RiskLevel.CRISIS
        assert "Recent crisis events detected" in result.factors
        assert result.monitoring_required is True

    def test_three_critical_events_in_a_day_are_crisis(self, log, assessor):
        for hours_ago in (20, 8, 1):
            log.append("user", event(Severity.CRITICAL, hours_ago=hours_ago))

        result = assessor.assess("user", [], NOW)

        assert result.risk_level is RiskLevel.CRISIS
        assert result.factors == ("Recent crisis events detected",)

    def test_three_high_events_are_high(self, log, assessor):
        for _ in range(3):
            log.append("user", event(Severity.HIGH))

        result = assessor.assess("user", [], NOW)

        assert result.risk_level is RiskLevel.HIGH
        assert result.factors == ("Multiple high-severity events in recent period",)
        assert result.monitoring_required is True

    def test_old_events_are_ignored(self, log, assessor):
        log.append("user", event(Severity.CRITICAL, hours_ago=25))

        assert assessor.assess("user", [], NOW).risk_level is RiskLevel.LOW

    def test_negative_language_lifts_low_to_medium(self, assessor):
        activity = ["things are worse", "everything is terrible and awful",
                    "it feels hopeless and pointless", "so unbearable, worse again"]

        result = assessor.assess("user", activity, NOW)

        assert result.risk_level is RiskLevel.MEDIUM
        assert "Escalating negative language patterns" in result.factors

    def test_isolation_language(self, assessor):
        activity = ["I am alone", "nobody calls", "I feel isolated", "abandoned again"]

        result = assessor.assess("user", activity, NOW)

        assert result.risk_level is RiskLevel.MEDIUM
        assert result.factors == ("Social isolation indicators",)

    def test_help_seeking_is_recorded_without_lowering(self, log, assessor):
        log.append("user", event(Severity.CRITICAL))
        activity = ["I want help", "talk to a counselor", "maybe therapy and support"]

        result = assessor.assess("user", activity, NOW)

        assert result.risk_level is RiskLevel.CRISIS
        assert "Positive: Help-seeking behavior detected" in result.factors

    def test_activity_does_not_raise_above_history(self, log, assessor):
        for _ in range(3):
            log.append("user", event(Severity.HIGH))
        activity = ["alone", "nobody", "isolated", "abandoned", "rejected"]

        assert assessor.assess("user", activity, NOW).risk_level is RiskLevel.HIGH

    def test_internal_failure_returns_conservative_assessment(self):
        broken = MagicMock()
        broken.recent.side_effect = RuntimeError("boom")

        result = HistoryRiskAssessor(broken).assess("user", [], NOW)

        assert result is FALLBACK_ASSESSMENT
        assert result.risk_level is RiskLevel.MEDIUM
        assert result.monitoring_required is True
        assert "Manual review recommended" in result.recommendations
