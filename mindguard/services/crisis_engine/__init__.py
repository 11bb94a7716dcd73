"""Crisis Engine: escalation decisions and the per-message safety monitor.

The "fire alarm" must keep working when any collaborator fails: every
message gets a response with emergency resources, and degraded signals
escalate rather than pass silently.

Components:
- monitor.py: SafetyMonitor, the operations exposed to the application
- escalation.py: RiskAssessor precedence rules and EscalationEngine responses
- event_log.py: capped per-user safety event log and history risk assessment
- follow_up_publisher.py: Kinesis publishing of follow-up-required outcomes
"""

from .escalation import EscalationEngine, RiskAssessor, RiskSignals
from .event_log import (
    HistoryRiskAssessor,
    PostgresSafetyEventStore,
    SafetyEventLog,
    SafetyEventStore,
)
from .follow_up_publisher import FollowUpEvent, FollowUpPublisher
from .monitor import SafetyMonitor

__all__ = [
    "EscalationEngine",
    "RiskAssessor",
    "RiskSignals",
    "HistoryRiskAssessor",
    "PostgresSafetyEventStore",
    "SafetyEventLog",
    "SafetyEventStore",
    "FollowUpEvent",
    "FollowUpPublisher",
    "SafetyMonitor",
]
