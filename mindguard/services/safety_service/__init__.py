"""Safety Service: lexical crisis detection and content-safety signals.

Every message passes through here before escalation is decided.

Components:
- detector.py: CrisisDetector with three disjoint keyword tiers and crisis signals
- config.py: KeywordPolicy loader, SafetyConfig, RiskThresholds
- policy/safety_policy.json: versioned keyword lists
- resources.py: static emergency resource catalogue
- content_safety.py: Azure AI Content Safety client and verdict mapping

Usage:
    from mindguard.services.safety_service import CrisisDetector
    detector = CrisisDetector()
    result = detector.detect("I can't go on")
"""

from .config import (
    ContentSafetyConfig,
    KeywordPolicy,
    RiskThresholds,
    SafetyConfig,
    load_policy,
)
from .detector import CrisisDetector, detect
from .resources import get_emergency_resources, resources_for_level
from .content_safety import (
    AzureContentSafetyClient,
    ContentSafetyClient,
    ContentSafetyService,
    moderate,
    summarize,
)

__all__ = [
    "ContentSafetyConfig",
    "KeywordPolicy",
    "RiskThresholds",
    "SafetyConfig",
    "load_policy",
    "CrisisDetector",
    "detect",
    "get_emergency_resources",
    "resources_for_level",
    "AzureContentSafetyClient",
    "ContentSafetyClient",
    "ContentSafetyService",
    "moderate",
    "summarize",
]
