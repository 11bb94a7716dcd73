"""Shared domain models for the MindGuard safety pipeline."""
from .risk import (
    RiskLevel,
    Severity,
    DetectionLevel,
    SafetyFlagType,
    SafetyFlag,
    EmergencyResource,
    CrisisResult,
    CrisisSignals,
    CrisisDetectionResult,
    CrisisResponse,
    RiskAssessment,
)
from .conversation import (
    EmotionLabel,
    SentimentScores,
    EmotionScores,
    EmotionalAnalysis,
    MessageSummary,
    EmotionalState,
    ConversationContext,
)
from .content_safety import (
    ContentCategory,
    CategorySeverity,
    SafetyResult,
    ModerationResult,
)
from .checkin import (
    MoodTrend,
    TriggerType,
    TriggerSeverity,
    CheckInFrequency,
    MoodPattern,
    CheckInTrigger,
)

__all__ = [
    "RiskLevel",
    "Severity",
    "DetectionLevel",
    "SafetyFlagType",
    "SafetyFlag",
    "EmergencyResource",
    "CrisisResult",
    "CrisisSignals",
    "CrisisDetectionResult",
    "CrisisResponse",
    "RiskAssessment",
    "EmotionLabel",
    "SentimentScores",
    "EmotionScores",
    "EmotionalAnalysis",
    "MessageSummary",
    "EmotionalState",
    "ConversationContext",
    "ContentCategory",
    "CategorySeverity",
    "SafetyResult",
    "ModerationResult",
    "MoodTrend",
    "TriggerType",
    "TriggerSeverity",
    "CheckInFrequency",
    "MoodPattern",
    "CheckInTrigger",
]
