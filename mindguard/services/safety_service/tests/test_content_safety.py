"""Tests for the content-safety client, verdict mapping and moderation."""
import asyncio
import pytest

import aiohttp

from mindguard.shared.errors import ExternalServiceError, ValidationError
from mindguard.shared.models import CategorySeverity, ContentCategory, RiskLevel
from mindguard.services.safety_service.config import ContentSafetyConfig, SafetyConfig
from mindguard.services.safety_service.content_safety import (
    AzureContentSafetyClient,
    ContentSafetyClient,
    ContentSafetyService,
    moderate,
    parse_categories,
    summarize,
    unavailable_result,
)


class FakeResponse:
    def __init__(self, status, body=None):
        self.status = status
        self._body = body

    async def json(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


class FakeSession:
    """Records posts and replays queued responses or errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.posts = []
        self.closed = False

    def post(self, url, headers=None, json=None):
        self.posts.append({"url": url, "headers": headers, "json": json})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class StaticClient(ContentSafetyClient):
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def analyze_categories(self, text):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


CONFIG = ContentSafetyConfig(endpoint="https://cs.example.com", api_key="secret")
FAST = SafetyConfig(content_safety_timeout_seconds=0.5, retry_backoff_seconds=0.0)


def severities(**values):
    return [CategorySeverity(ContentCategory(name), sev) for name, sev in values.items()]


class TestAzureContentSafetyClient:

    def test_posts_text_with_subscription_key(self):
        session = FakeSession(FakeResponse(200, {"categoriesAnalysis": [
            {"category": "Hate", "severity": 0},
            {"category": "SelfHarm", "severity": 4},
        ]}))
        client = AzureContentSafetyClient(CONFIG, session=session)

        categories = asyncio.run(client.analyze_categories("some text"))

        post = session.posts[0]
        assert post["url"] == (
            "https://cs.example.com/contentsafety/text:analyze?api-version=2023-10-01"
        )
        assert post["headers"]["Ocp-Apim-Subscription-Key"] == "secret"
        assert post["json"] == {"text": "some text"}
        assert categories[1] == CategorySeverity(ContentCategory.SELF_HARM, 4)

    def test_throttling_is_retryable(self):
        client = AzureContentSafetyClient(CONFIG, session=FakeSession(FakeResponse(429)))

        with pytest.raises(ExternalServiceError) as exc_info:
            asyncio.run(client.analyze_categories("text"))
        assert exc_info.value.retryable is True
        assert exc_info.value.code == "429"

    def test_client_error_status_is_final(self):
        client = AzureContentSafetyClient(CONFIG, session=FakeSession(FakeResponse(401)))

        with pytest.raises(ExternalServiceError) as exc_info:
            asyncio.run(client.analyze_categories("text"))
        assert exc_info.value.retryable is False

    def test_connection_error_is_retryable(self):
        session = FakeSession(aiohttp.ClientConnectionError("reset"))
        client = AzureContentSafetyClient(CONFIG, session=session)

        with pytest.raises(ExternalServiceError) as exc_info:
            asyncio.run(client.analyze_categories("text"))
        assert exc_info.value.code == "CONNECTION_ERROR"
        assert exc_info.value.retryable is True


class TestParseCategories:

    def test_rejects_missing_analysis(self):
        with pytest.raises(ValidationError):
            parse_categories({"blocklistsMatch": []})

    def test_rejects_out_of_range_severity(self):
        with pytest.raises(ValidationError):
            parse_categories({"categoriesAnalysis": [{"category": "Hate", "severity": 9}]})

    def test_rejects_unknown_category(self):
        with pytest.raises(ValidationError):
            parse_categories({"categoriesAnalysis": [{"category": "Spam", "severity": 2}]})


class TestSummarize:

    def test_self_harm_at_six_is_crisis(self):
        result = summarize(severities(self_harm=6))

        assert result.risk_level == RiskLevel.CRISIS
        assert result.is_safe is False

    def test_other_category_at_six_is_high(self):
        assert summarize(severities(violence=6)).risk_level == RiskLevel.HIGH

    def test_severity_four_is_medium(self):
        assert summarize(severities(hate=4, sexual=0)).risk_level == RiskLevel.MEDIUM

    def test_low_severity_is_safe(self):
        result = summarize(severities(hate=2, self_harm=0))

        assert result.risk_level == RiskLevel.LOW
        assert result.is_safe is True
        assert result.available is True

    def test_confidence_defaults_without_categories(self):
        assert summarize([]).confidence == 0.5


class TestModerate:

    def test_blocks_high_severity_hate(self):
        verdict = moderate(summarize(severities(hate=6, self_harm=4)))

        assert verdict.blocked is True
        assert verdict.categories == (ContentCategory.HATE, ContentCategory.SELF_HARM)
        assert "hate" in verdict.reason

    def test_does_not_block_self_harm(self):
        verdict = moderate(summarize(severities(self_harm=7)))

        assert verdict.blocked is False
        assert verdict.categories == (ContentCategory.SELF_HARM,)

    def test_unavailable_verdict_asks_for_review(self):
        verdict = moderate(unavailable_result())

        assert verdict.blocked is False
        assert "unavailable" in verdict.reason


class TestContentSafetyService:

    def test_retries_then_summarizes(self):
        client = StaticClient(
            ExternalServiceError("content_safety", "HTTP 503", retryable=True),
            severities(violence=4),
        )
        service = ContentSafetyService(client, FAST)

        result = asyncio.run(service.analyze("text"))

        assert client.calls == 2
        assert result.risk_level == RiskLevel.MEDIUM

    def test_check_returns_conservative_verdict_on_failure(self):
        client = StaticClient(ExternalServiceError("content_safety", "HTTP 401"))
        service = ContentSafetyService(client, FAST)

        result = asyncio.run(service.check("text"))

        assert result.available is False
        assert result.is_safe is False
        assert result.risk_level == RiskLevel.MEDIUM

    def test_unconfigured_service_is_unavailable(self):
        service = ContentSafetyService(None, FAST)

        assert service.configured is False
        assert asyncio.run(service.check("text")).available is False
