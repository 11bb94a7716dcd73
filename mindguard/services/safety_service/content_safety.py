"""Content-safety collaborator: Azure AI Content Safety text analysis.

The client returns raw category severities; summarize() turns them into a
SafetyResult. ContentSafetyService adds timeout, bounded retry and the
conservative verdict used when no answer can be obtained.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

import aiohttp

from mindguard.shared.errors import ExternalServiceError, ValidationError
from mindguard.shared.models import (
    CategorySeverity,
    ContentCategory,
    ModerationResult,
    RiskLevel,
    SafetyResult,
)
from mindguard.shared.utils import call_with_retry
from .config import ContentSafetyConfig, RiskThresholds, SafetyConfig

logger = logging.getLogger(__name__)

SERVICE_NAME = "content_safety"

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

BLOCKING_CATEGORIES = frozenset({ContentCategory.HATE, ContentCategory.VIOLENCE})


class ContentSafetyClient(ABC):
    """Collaborator returning per-category severities for a text."""

    @abstractmethod
    async def analyze_categories(self, text: str) -> List[CategorySeverity]:
        pass

    async def close(self) -> None:
        pass


class AzureContentSafetyClient(ContentSafetyClient):
    """aiohttp client for the text:analyze endpoint."""

    def __init__(
        self,
        config: ContentSafetyConfig,
        session: Optional[aiohttp.ClientSession] = None,
        request_timeout_seconds: float = 10.0,
    ):
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)

    @property
    def url(self) -> str:
        return (
            f"{self.config.endpoint}/contentsafety/text:analyze"
            f"?api-version={self.config.api_version}"
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def analyze_categories(self, text: str) -> List[CategorySeverity]:
        session = self._get_session()
        headers = {
            "Ocp-Apim-Subscription-Key": self.config.api_key,
            "Content-Type": "application/json",
        }
        try:
            async with session.post(self.url, headers=headers, json={"text": text}) as response:
                if response.status in RETRYABLE_STATUS:
                    raise ExternalServiceError(
                        SERVICE_NAME,
                        f"HTTP {response.status}",
                        code=str(response.status),
                        retryable=True,
                    )
                if response.status >= 400:
                    raise ExternalServiceError(
                        SERVICE_NAME, f"HTTP {response.status}", code=str(response.status)
                    )
                body = await response.json()
        except aiohttp.ClientError as e:
            raise ExternalServiceError(
                SERVICE_NAME, str(e), code="CONNECTION_ERROR", retryable=True
            ) from e

        return parse_categories(body)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


def parse_categories(body: Any) -> List[CategorySeverity]:
    """Parse the categoriesAnalysis list of a text:analyze response.

    Raises:
        ValidationError: If the body does not have the expected shape
    """
    if not isinstance(body, dict) or not isinstance(body.get("categoriesAnalysis"), list):
        raise ValidationError("Content-safety response is missing categoriesAnalysis")
    return [CategorySeverity.from_payload(entry) for entry in body["categoriesAnalysis"]]


def summarize(
    categories: Sequence[CategorySeverity],
    thresholds: Optional[RiskThresholds] = None,
) -> SafetyResult:
    """Map category severities onto a risk level.

    Self-harm at or above the crisis severity is a crisis on its own; otherwise
    the highest severity of any category decides.
    """
    thresholds = thresholds or RiskThresholds()
    highest = max((c.severity for c in categories), default=0)
    self_harm = max(
        (c.severity for c in categories if c.category is ContentCategory.SELF_HARM),
        default=0,
    )

    if self_harm >= thresholds.self_harm_crisis_severity:
        level = RiskLevel.CRISIS
    elif highest >= thresholds.category_high_severity:
        level = RiskLevel.HIGH
    elif highest >= thresholds.category_flag_severity:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    if categories:
        confidence = min(sum(c.severity for c in categories) / len(categories) / 7, 1.0)
    else:
        confidence = 0.5

    return SafetyResult(
        is_safe=level is RiskLevel.LOW,
        risk_level=level,
        categories=tuple(categories),
        confidence=confidence,
    )


def unavailable_result() -> SafetyResult:
    """Verdict used when the collaborator could not answer; never safe."""
    return SafetyResult(
        is_safe=False,
        risk_level=RiskLevel.MEDIUM,
        categories=(),
        confidence=0.5,
        available=False,
    )


def moderate(result: SafetyResult, thresholds: Optional[RiskThresholds] = None) -> ModerationResult:
    """Block hate or violence at high severity; report categories at flag severity."""
    thresholds = thresholds or RiskThresholds()
    flagged = tuple(
        c.category for c in result.categories
        if c.severity >= thresholds.category_flag_severity
    )
    blocked = any(
        c.severity >= thresholds.category_high_severity and c.category in BLOCKING_CATEGORIES
        for c in result.categories
    )
    reason = None
    if not result.available:
        reason = "Content safety unavailable; manual review recommended"
    elif blocked:
        if flagged:
            names = ", ".join(c.value for c in flagged)
            reason = f"Content contains {names} that may be harmful"
        else:
            reason = "Content flagged for review"
    return ModerationResult(blocked=blocked, reason=reason, categories=flagged)


class ContentSafetyService:
    """Retrying wrapper around an optional ContentSafetyClient."""

    def __init__(
        self,
        client: Optional[ContentSafetyClient] = None,
        config: Optional[SafetyConfig] = None,
        thresholds: Optional[RiskThresholds] = None,
    ):
        self.client = client
        self.config = config or SafetyConfig()
        self.thresholds = thresholds or RiskThresholds()

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def analyze(self, text: str) -> SafetyResult:
        """Summarized verdict; raises ExternalServiceError once retries are exhausted."""
        if self.client is None:
            raise ExternalServiceError(SERVICE_NAME, "no client configured", code="NOT_CONFIGURED")
        categories = await call_with_retry(
            lambda: self.client.analyze_categories(text),
            SERVICE_NAME,
            timeout_seconds=self.config.content_safety_timeout_seconds,
            max_retries=self.config.max_retries,
            backoff_seconds=self.config.retry_backoff_seconds,
        )
        return summarize(categories, self.thresholds)

    async def check(self, text: str) -> SafetyResult:
        """Like analyze(), but returns the conservative verdict instead of raising."""
        try:
            return await self.analyze(text)
        except ExternalServiceError as e:
            logger.error(
                "CONTENT_SAFETY_UNAVAILABLE",
                extra={"code": e.code, "retryable": e.retryable}
            )
            return unavailable_result()

    async def moderate(self, text: str) -> ModerationResult:
        return moderate(await self.check(text), self.thresholds)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
