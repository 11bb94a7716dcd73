"""Lexical crisis detection.

Broad case-insensitive substring matching over three disjoint tiers. Recall
is preferred over precision: a missed crisis costs far more than a false
alarm. No I/O; the keyword policy is loaded once at construction.
"""
import logging
from typing import List, Optional, Tuple

from mindguard.shared.models import CrisisResult, CrisisSignals, DetectionLevel
from .config import KeywordPolicy, load_policy, normalize_text
from .resources import CRISIS_RESOURCES

logger = logging.getLogger(__name__)


_TIER_LABELS = (
    (DetectionLevel.CRITICAL, "critical", "Critical indicator"),
    (DetectionLevel.HIGH, "high", "High risk indicator"),
    (DetectionLevel.MEDIUM, "medium", "Concern indicator"),
)


class CrisisDetector:
    """Keyword-tier crisis detector."""

    def __init__(self, policy: Optional[KeywordPolicy] = None):
        self.policy = policy or load_policy()

    def detect(self, text: str) -> CrisisResult:
        """Classify text into the first matching tier.

        All matches within the winning tier are reported as indicators;
        lower tiers are not evaluated once a tier matched.
        """
        lowered = normalize_text(text)

        for level, tier_name, label in _TIER_LABELS:
            matches = _matches(lowered, getattr(self.policy, tier_name))
            if matches:
                is_crisis = level in (DetectionLevel.CRITICAL, DetectionLevel.HIGH)
                return CrisisResult(
                    is_crisis=is_crisis,
                    level=level,
                    indicators=tuple(f'{label}: "{phrase}"' for phrase in matches),
                    resources=CRISIS_RESOURCES if is_crisis else (),
                    policy_version=self.policy.version,
                )

        return CrisisResult(
            is_crisis=False,
            level=DetectionLevel.NONE,
            policy_version=self.policy.version,
        )

    def analyze_signals(self, text: str) -> CrisisSignals:
        """Mental-health specific lexical signals used by escalation."""
        lowered = normalize_text(text)
        return CrisisSignals(
            suicidal_ideation=_any(lowered, self.policy.suicidal_ideation),
            self_harm_risk=_any(lowered, self.policy.self_harm),
            severe_distress=_any(lowered, self.policy.severe_distress),
            hopelessness=_any(lowered, self.policy.hopelessness),
            immediate_risk=_any(lowered, self.policy.immediacy),
        )

    def count_occurrences(self, texts: List[str], phrases: Tuple[str, ...]) -> int:
        """Total non-overlapping occurrences of phrases across texts."""
        combined = normalize_text(" ".join(texts))
        return sum(combined.count(phrase) for phrase in phrases)


def _matches(lowered: str, phrases: Tuple[str, ...]) -> List[str]:
    return [phrase for phrase in phrases if phrase in lowered]


def _any(lowered: str, phrases: Tuple[str, ...]) -> bool:
    return any(phrase in lowered for phrase in phrases)


_default_detector: Optional[CrisisDetector] = None


def detect(text: str) -> CrisisResult:
    """Module-level detect() using the bundled policy."""
    global _default_detector
    if _default_detector is None:
        _default_detector = CrisisDetector()
    return _default_detector.detect(text)
