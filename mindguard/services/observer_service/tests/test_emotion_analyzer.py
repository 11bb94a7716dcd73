"""Tests for the emotion/sentiment adapter.

The transformers pipelines are replaced with mocks so no model download is
needed in CI.
"""
import asyncio
import pytest
from unittest.mock import MagicMock

from mindguard.shared.errors import ExternalServiceError
from mindguard.shared.models import EmotionalAnalysis, EmotionScores, SentimentScores
from mindguard.shared.utils import configure_pii_salt
from mindguard.services.safety_service.config import SafetyConfig
from mindguard.services.observer_service.emotion_analyzer import (
    EmotionAnalyzer,
    EmotionServiceClient,
    TransformersEmotionClient,
    basic_analysis,
    extract_key_phrases,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


FAST = SafetyConfig(sentiment_timeout_seconds=0.5, retry_backoff_seconds=0.0)


class ScriptedClient(EmotionServiceClient):
    def __init__(self, outcome, delay=0.0):
        self.outcome = outcome
        self.delay = delay
        self.calls = 0

    async def analyze(self, text):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def service_analysis():
    return EmotionalAnalysis(
        sentiment=SentimentScores(positive=0.1, neutral=0.2, negative=0.7),
        emotions=EmotionScores(sadness=0.8),
    )


class TestBasicAnalysis:

    def test_happy_message_favours_joy(self):
        analysis = basic_analysis("I had a great day, feeling happy")

        assert analysis.emotions.joy > analysis.emotions.sadness
        assert analysis.sentiment.positive > analysis.sentiment.negative
        assert analysis.source == "offline"

    def test_sentiment_always_sums_to_one(self):
        for text in ("", "sad and angry and scared", "happy sad", "nothing to see"):
            s = basic_analysis(text).sentiment
            assert s.positive + s.neutral + s.negative == pytest.approx(1.0)

    def test_scores_are_capped(self):
        text = "happy excited great wonderful amazing fantastic love joy pleased delighted"

        assert basic_analysis(text).emotions.joy == 1.0

    def test_collects_stress_and_coping_words(self):
        analysis = basic_analysis("Exam pressure has me stressed, so I try to breathe")

        assert set(analysis.stress_indicators) == {"stressed", "pressure", "exam"}
        assert analysis.coping_mechanisms == ("breathe",)

    def test_keywords_match_whole_words_only(self):
        analysis = basic_analysis("She made an example to show how much we enjoy class")

        assert analysis.emotions.anger == 0.0
        assert analysis.emotions.joy == 0.0
        assert analysis.stress_indicators == ()

    def test_keywords_match_simple_inflections(self):
        analysis = basic_analysis("I talked it through before my exams and loved it")

        assert analysis.stress_indicators == ("exam",)
        assert analysis.coping_mechanisms == ("talk",)
        assert analysis.emotions.joy > 0.0

    def test_key_phrases_are_short_sentences(self):
        text = "First one. " + "x" * 80 + "! Third? Fourth."

        phrases = extract_key_phrases(text)

        assert phrases[0] == "First one"
        assert len(phrases) == 3
        assert len(phrases[1]) == 50


class TestEmotionAnalyzer:

    def test_without_client_runs_offline(self):
        analyzer = EmotionAnalyzer(None, FAST)

        result = asyncio.run(analyzer.analyze("feeling happy"))

        assert result.source == "offline"
        assert result.is_fallback is False

    def test_uses_client_result(self):
        analyzer = EmotionAnalyzer(ScriptedClient(service_analysis()), FAST)

        result = asyncio.run(analyzer.analyze("text"))

        assert result.source == "service"
        assert result.emotions.sadness == 0.8

    def test_client_failure_falls_back(self):
        client = ScriptedClient(RuntimeError("model crashed"))
        analyzer = EmotionAnalyzer(client, FAST)

        result = asyncio.run(analyzer.analyze("I feel happy"))

        assert result.source == "fallback"
        assert result.is_fallback is True
        assert result.emotions.joy > 0

    def test_timeout_is_retried_then_falls_back(self):
        client = ScriptedClient(service_analysis(), delay=1.0)
        config = SafetyConfig(sentiment_timeout_seconds=0.01, max_retries=1, retry_backoff_seconds=0.0)
        analyzer = EmotionAnalyzer(client, config)

        result = asyncio.run(analyzer.analyze("text"))

        assert client.calls == 2
        assert result.source == "fallback"

    def test_final_service_error_is_not_retried(self):
        client = ScriptedClient(ExternalServiceError("sentiment", "bad request"))
        analyzer = EmotionAnalyzer(client, FAST)

        result = asyncio.run(analyzer.analyze("text"))

        assert client.calls == 1
        assert result.source == "fallback"


class TestTransformersEmotionClient:

    def make_client(self, emotion_output, sentiment_output):
        client = TransformersEmotionClient()
        client._emotion_pipeline = MagicMock(return_value=emotion_output)
        client._sentiment_pipeline = MagicMock(return_value=sentiment_output)
        return client

    def test_maps_pipeline_labels(self):
        client = self.make_client(
            [[
                {"label": "joy", "score": 0.7},
                {"label": "sadness", "score": 0.1},
                {"label": "neutral", "score": 0.2},
            ]],
            [[
                {"label": "positive", "score": 0.8},
                {"label": "neutral", "score": 0.15},
                {"label": "negative", "score": 0.05},
            ]],
        )

        result = asyncio.run(client.analyze("Best day ever. Really."))

        assert result.source == "service"
        assert result.emotions.joy == 0.7
        assert result.emotions.fear == 0.0
        assert result.sentiment.positive == pytest.approx(0.8)
        assert result.key_phrases == ("Best day ever", "Really")

    def test_truncates_long_input(self):
        client = self.make_client(
            [{"label": "joy", "score": 0.5}],
            [{"label": "neutral", "score": 1.0}],
        )

        asyncio.run(client.analyze("a" * 5000))

        sent = client._emotion_pipeline.call_args[0][0]
        assert len(sent) == TransformersEmotionClient.MAX_CHARS

    def test_out_of_range_score_falls_back_in_analyzer(self):
        client = self.make_client(
            [{"label": "joy", "score": 1.7}],
            [{"label": "positive", "score": 1.0}],
        )
        analyzer = EmotionAnalyzer(client, FAST)

        result = asyncio.run(analyzer.analyze("great"))

        assert result.source == "fallback"
