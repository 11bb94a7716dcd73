"""Content-safety category scores and their summarized verdicts."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from mindguard.shared.errors import ValidationError
from .risk import RiskLevel

MAX_CATEGORY_SEVERITY = 7


class ContentCategory(Enum):
    HATE = "hate"
    SELF_HARM = "self_harm"
    SEXUAL = "sexual"
    VIOLENCE = "violence"

    @classmethod
    def parse(cls, name: str) -> "ContentCategory":
        """Accept both snake_case values and service names such as SelfHarm."""
        normalized = "".join(
            "_" + c.lower() if c.isupper() and i else c.lower()
            for i, c in enumerate(name.strip())
        ).replace("-", "_").replace("__", "_")
        for member in cls:
            if member.value == normalized:
                return member
        raise ValidationError(f"Unknown content category: {name!r}")


@dataclass(frozen=True)
class CategorySeverity:
    category: ContentCategory
    severity: int

    def __post_init__(self):
        if isinstance(self.severity, bool) or not isinstance(self.severity, int):
            raise ValidationError(f"Category severity must be an integer, got {self.severity!r}")
        if not 0 <= self.severity <= MAX_CATEGORY_SEVERITY:
            raise ValidationError(
                f"Category severity must be 0-{MAX_CATEGORY_SEVERITY}, got {self.severity}"
            )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CategorySeverity":
        """Parse one categoriesAnalysis entry."""
        if not isinstance(payload, Mapping):
            raise ValidationError("Category entry must be a mapping")
        name = payload.get("category")
        if not isinstance(name, str):
            raise ValidationError("Category entry is missing its category name")
        return cls(category=ContentCategory.parse(name), severity=payload.get("severity"))

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category.value, "severity": self.severity}


@dataclass(frozen=True)
class SafetyResult:
    """Summarized verdict of the content-safety collaborator.

    available is False when no verdict could be obtained; such a result is
    never treated as safe by the escalation rules.
    """
    is_safe: bool
    risk_level: RiskLevel
    categories: Tuple[CategorySeverity, ...] = ()
    confidence: float = 0.0
    available: bool = True

    def severity_of(self, category: ContentCategory) -> int:
        for entry in self.categories:
            if entry.category is category:
                return entry.severity
        return 0

    @property
    def max_severity(self) -> int:
        return max((c.severity for c in self.categories), default=0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_safe": self.is_safe,
            "risk_level": self.risk_level.value,
            "categories": [c.to_dict() for c in self.categories],
            "confidence": round(self.confidence, 3),
            "available": self.available,
        }


@dataclass(frozen=True)
class ModerationResult:
    """Block decision derived from a SafetyResult."""
    blocked: bool
    reason: Optional[str] = None
    categories: Tuple[ContentCategory, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blocked": self.blocked,
            "reason": self.reason,
            "categories": [c.value for c in self.categories],
        }
