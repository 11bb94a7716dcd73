"""Risk levels, safety flags and escalation result records.

Risk decisions are max-wins over an explicitly ordered RiskLevel; signals are
never averaged into a level.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from mindguard.shared.utils.clock import utc_now


class RiskLevel(Enum):
    """Escalation severity, ordered low < medium < high < crisis."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRISIS = "crisis"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def at_least(self, other: "RiskLevel") -> "RiskLevel":
        return self if self.rank >= other.rank else other

    @classmethod
    def highest(cls, *levels: "RiskLevel") -> "RiskLevel":
        """Max-wins combination; LOW when no levels are given."""
        result = cls.LOW
        for level in levels:
            if level.rank > result.rank:
                result = level
        return result


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRISIS: 3,
}


class Severity(Enum):
    """Severity recorded on a SafetyFlag."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_risk_level(cls, level: RiskLevel) -> "Severity":
        return _SEVERITY_FOR_RISK[level]


_SEVERITY_FOR_RISK = {
    RiskLevel.CRISIS: Severity.CRITICAL,
    RiskLevel.HIGH: Severity.HIGH,
    RiskLevel.MEDIUM: Severity.MEDIUM,
    RiskLevel.LOW: Severity.LOW,
}


class DetectionLevel(Enum):
    """Outcome of the lexical keyword tiers."""
    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SafetyFlagType(Enum):
    CRISIS_INDICATOR = "crisis_indicator"
    RISK_PATTERN = "risk_pattern"
    CONTENT_FLAGGED = "content_flagged"


@dataclass(frozen=True)
class SafetyFlag:
    """A logged, time-decayed record of a detected concern for one user.

    Immutable - flags are only ever appended and aged out, never edited.
    """
    flag_type: SafetyFlagType
    severity: Severity
    context: str
    action_taken: str
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if self.timestamp.tzinfo is None:
            raise ValueError("SafetyFlag timestamp must be timezone-aware")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.flag_type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
            "action_taken": self.action_taken,
        }


@dataclass(frozen=True)
class EmergencyResource:
    """A support line or service offered to the user."""
    name: str
    phone: str
    description: str
    availability: str
    website: Optional[str] = None
    location: Optional[str] = None

    @property
    def is_always_available(self) -> bool:
        return self.availability == "24/7"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "description": self.description,
            "availability": self.availability,
            "website": self.website,
            "location": self.location,
        }


@dataclass(frozen=True)
class CrisisResult:
    """Output of the lexical crisis detector."""
    is_crisis: bool
    level: DetectionLevel
    indicators: Tuple[str, ...] = ()
    resources: Tuple[EmergencyResource, ...] = ()
    policy_version: str = ""

    def __post_init__(self):
        expected = self.level in (DetectionLevel.CRITICAL, DetectionLevel.HIGH)
        if self.is_crisis != expected:
            raise ValueError(f"is_crisis={self.is_crisis} inconsistent with level {self.level.value}")
        if self.resources and not self.is_crisis:
            raise ValueError("Resources are only attached to crisis results")


@dataclass(frozen=True)
class CrisisSignals:
    """Mental-health specific lexical signals feeding escalation rules."""
    suicidal_ideation: bool = False
    self_harm_risk: bool = False
    severe_distress: bool = False
    hopelessness: bool = False
    immediate_risk: bool = False

    def indicators(self) -> List[str]:
        found = []
        if self.suicidal_ideation:
            found.append("Suicidal ideation detected")
        if self.self_harm_risk:
            found.append("Self-harm risk identified")
        if self.severe_distress:
            found.append("Severe emotional distress")
        if self.hopelessness:
            found.append("Expressions of hopelessness")
        if self.immediate_risk:
            found.append("Immediate risk indicators")
        return found


@dataclass(frozen=True)
class CrisisDetectionResult:
    """Ordered risk decision combining every signal for one message."""
    crisis_detected: bool
    risk_level: RiskLevel
    immediate: bool = False
    indicators: Tuple[str, ...] = ()
    recommended_actions: Tuple[str, ...] = ()
    emergency_resources: Tuple[EmergencyResource, ...] = ()
    degraded_sources: Tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_sources)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crisis_detected": self.crisis_detected,
            "risk_level": self.risk_level.value,
            "immediate": self.immediate,
            "indicators": list(self.indicators),
            "recommended_actions": list(self.recommended_actions),
            "emergency_resources": [r.to_dict() for r in self.emergency_resources],
            "degraded_sources": list(self.degraded_sources),
        }


@dataclass(frozen=True)
class CrisisResponse:
    """Escalation payload returned to the surrounding application."""
    risk_level: RiskLevel
    immediate: bool
    crisis_detected: bool
    resources: Tuple[EmergencyResource, ...]
    response_message: str
    follow_up_required: bool
    indicators: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.resources:
            raise ValueError("CrisisResponse must always carry resources")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "risk_level": self.risk_level.value,
            "immediate": self.immediate,
            "crisis_detected": self.crisis_detected,
            "resources": [r.to_dict() for r in self.resources],
            "response_message": self.response_message,
            "follow_up_required": self.follow_up_required,
            "indicators": list(self.indicators),
        }


@dataclass(frozen=True)
class RiskAssessment:
    """History-based risk assessment for one user."""
    risk_level: RiskLevel
    factors: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    monitoring_required: bool = False

    def __post_init__(self):
        expected = self.risk_level in (RiskLevel.HIGH, RiskLevel.CRISIS)
        # Conservative fallbacks may demand monitoring below HIGH, never the reverse
        if expected and not self.monitoring_required:
            raise ValueError("High and crisis assessments require monitoring")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "risk_level": self.risk_level.value,
            "factors": list(self.factors),
            "recommendations": list(self.recommendations),
            "monitoring_required": self.monitoring_required,
        }
