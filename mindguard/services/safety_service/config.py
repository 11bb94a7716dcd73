"""Safety pipeline configuration, thresholds and the keyword policy.

Keyword tiers and lexicons are versioned data in policy/safety_policy.json so
detection policy can be reviewed and changed without touching the matcher.
"""
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from mindguard.shared.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_POLICY_PATH = Path(__file__).parent / "policy" / "safety_policy.json"

TIER_ORDER = ("critical", "high", "medium")
SIGNAL_NAMES = ("suicidal_ideation", "self_harm", "severe_distress", "hopelessness", "immediacy")
ACTIVITY_NAMES = ("negative", "isolation", "help_seeking")


@dataclass(frozen=True)
class KeywordPolicy:
    """Immutable, versioned keyword lists used by lexical detection.

    Phrases are stored lower-cased; tiers are disjoint.
    """
    version: str
    critical: Tuple[str, ...]
    high: Tuple[str, ...]
    medium: Tuple[str, ...]
    suicidal_ideation: Tuple[str, ...]
    self_harm: Tuple[str, ...]
    severe_distress: Tuple[str, ...]
    hopelessness: Tuple[str, ...]
    immediacy: Tuple[str, ...]
    negative_language: Tuple[str, ...]
    isolation_language: Tuple[str, ...]
    help_seeking_language: Tuple[str, ...]

    def __post_init__(self):
        if not self.version:
            raise ValidationError("Keyword policy must carry a version")
        seen: Dict[str, str] = {}
        for tier in TIER_ORDER:
            for phrase in getattr(self, tier):
                if phrase in seen:
                    raise ValidationError(
                        f"Phrase {phrase!r} appears in both {seen[phrase]} and {tier} tiers"
                    )
                seen[phrase] = tier

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KeywordPolicy":
        tiers = _section(data, "tiers", TIER_ORDER)
        signals = _section(data, "signals", SIGNAL_NAMES)
        activity = _section(data, "activity", ACTIVITY_NAMES)
        return cls(
            version=str(data.get("version", "")),
            critical=tiers["critical"],
            high=tiers["high"],
            medium=tiers["medium"],
            suicidal_ideation=signals["suicidal_ideation"],
            self_harm=signals["self_harm"],
            severe_distress=signals["severe_distress"],
            hopelessness=signals["hopelessness"],
            immediacy=signals["immediacy"],
            negative_language=activity["negative"],
            isolation_language=activity["isolation"],
            help_seeking_language=activity["help_seeking"],
        )


def _section(data: Mapping[str, Any], name: str, keys: Tuple[str, ...]) -> Dict[str, Tuple[str, ...]]:
    section = data.get(name)
    if not isinstance(section, Mapping):
        raise ValidationError(f"Keyword policy is missing the {name} section")
    parsed = {}
    for key in keys:
        phrases = section.get(key)
        if not isinstance(phrases, list) or not all(isinstance(p, str) and p.strip() for p in phrases):
            raise ValidationError(f"Keyword policy {name}.{key} must be a list of phrases")
        parsed[key] = tuple(normalize_text(p).strip() for p in phrases)
    return parsed


def normalize_text(text: str) -> str:
    """Lower-case and fold typographic apostrophes for substring matching."""
    return text.lower().replace("’", "'").replace("‘", "'")


def load_policy(path: Optional[str] = None) -> KeywordPolicy:
    """Load a keyword policy file.

    Args:
        path: Policy file; defaults to MINDGUARD_POLICY_PATH, then the bundled policy

    Raises:
        ValidationError: If the file is malformed or its tiers overlap
    """
    policy_path = Path(path or os.getenv("MINDGUARD_POLICY_PATH") or DEFAULT_POLICY_PATH)
    try:
        with open(policy_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(
            "KEYWORD_POLICY_LOAD_FAILED",
            extra={"path": str(policy_path), "error": str(e)}
        )
        raise ValidationError(f"Cannot load keyword policy {policy_path}: {e}") from e

    policy = KeywordPolicy.from_dict(data)
    logger.info(
        "KEYWORD_POLICY_LOADED",
        extra={
            "version": policy.version,
            "path": str(policy_path),
            "critical_phrases": len(policy.critical),
            "high_phrases": len(policy.high),
            "medium_phrases": len(policy.medium),
        }
    )
    return policy


@dataclass(frozen=True)
class RiskThresholds:
    """Fixed thresholds used by escalation and history assessment."""
    self_harm_crisis_severity: int = 6
    category_flag_severity: int = 4
    category_high_severity: int = 6
    high_severity_event_count: int = 3
    negative_language_count: int = 5
    isolation_language_count: int = 3
    help_seeking_count: int = 2


@dataclass(frozen=True)
class SafetyConfig:
    """Runtime settings for the safety monitor."""
    sentiment_timeout_seconds: float = 3.0
    content_safety_timeout_seconds: float = 3.0
    max_retries: int = 2
    retry_backoff_seconds: float = 0.2
    policy_path: Optional[str] = None
    event_log_capacity: int = 50
    flag_window_hours: int = 24
    session_ttl_hours: int = 24
    idle_eviction_days: int = 7
    pattern_window_days: int = 7
    history_retention_days: int = 30

    def __post_init__(self):
        if self.sentiment_timeout_seconds <= 0 or self.content_safety_timeout_seconds <= 0:
            raise ValueError("Collaborator timeouts must be positive")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.event_log_capacity < 1:
            raise ValueError(f"event_log_capacity must be >= 1, got {self.event_log_capacity}")

    @classmethod
    def from_env(cls) -> "SafetyConfig":
        """Create config from environment variables.

        Environment variables:
            MINDGUARD_SENTIMENT_TIMEOUT_SECONDS: Emotion call timeout (default 3.0)
            MINDGUARD_CONTENT_SAFETY_TIMEOUT_SECONDS: Content-safety call timeout (default 3.0)
            MINDGUARD_MAX_RETRIES: Retries for retryable failures (default 2)
            MINDGUARD_RETRY_BACKOFF_SECONDS: Linear backoff unit (default 0.2)
            MINDGUARD_POLICY_PATH: Custom keyword policy file
            MINDGUARD_EVENT_LOG_CAPACITY: Events kept per user (default 50)
            MINDGUARD_HISTORY_RETENTION_DAYS: Days of message summaries kept (default 30)
        """
        return cls(
            sentiment_timeout_seconds=float(os.getenv("MINDGUARD_SENTIMENT_TIMEOUT_SECONDS", "3.0")),
            content_safety_timeout_seconds=float(
                os.getenv("MINDGUARD_CONTENT_SAFETY_TIMEOUT_SECONDS", "3.0")
            ),
            max_retries=int(os.getenv("MINDGUARD_MAX_RETRIES", "2")),
            retry_backoff_seconds=float(os.getenv("MINDGUARD_RETRY_BACKOFF_SECONDS", "0.2")),
            policy_path=os.getenv("MINDGUARD_POLICY_PATH") or None,
            event_log_capacity=int(os.getenv("MINDGUARD_EVENT_LOG_CAPACITY", "50")),
            history_retention_days=int(os.getenv("MINDGUARD_HISTORY_RETENTION_DAYS", "30")),
        )


@dataclass(frozen=True)
class ContentSafetyConfig:
    """Azure AI Content Safety connection settings."""
    endpoint: str
    api_key: str
    api_version: str = "2023-10-01"

    @classmethod
    def from_env(cls) -> Optional["ContentSafetyConfig"]:
        """None when AZURE_CONTENT_SAFETY_ENDPOINT or _KEY is unset."""
        endpoint = os.getenv("AZURE_CONTENT_SAFETY_ENDPOINT", "")
        api_key = os.getenv("AZURE_CONTENT_SAFETY_KEY", "")
        if not endpoint or not api_key:
            return None
        return cls(
            endpoint=endpoint.rstrip("/"),
            api_key=api_key,
            api_version=os.getenv("AZURE_CONTENT_SAFETY_API_VERSION", "2023-10-01"),
        )
