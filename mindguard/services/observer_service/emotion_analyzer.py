"""Emotion and sentiment signal adapter.

Wraps an external EmotionServiceClient. analyze() never raises: when the
collaborator fails, times out or returns a malformed payload, a keyword
heuristic over the same six emotion labels is used instead and the result is
marked source="fallback" so escalation can treat it as a degraded signal.

Note: transformer inference adds noticeable latency on CPU, so the
pipelines are loaded lazily and run in the default executor.
"""
import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from mindguard.shared.errors import ExternalServiceError
from mindguard.shared.models import EmotionalAnalysis, EmotionLabel, EmotionScores, SentimentScores
from mindguard.shared.utils import call_with_retry
from mindguard.services.safety_service.config import SafetyConfig, normalize_text

logger = logging.getLogger(__name__)

SERVICE_NAME = "sentiment"

EMOTION_KEYWORDS: Dict[EmotionLabel, tuple] = {
    EmotionLabel.JOY: (
        "happy", "excited", "great", "wonderful", "amazing",
        "fantastic", "love", "joy", "pleased", "delighted",
    ),
    EmotionLabel.SADNESS: (
        "sad", "depressed", "down", "upset", "crying",
        "hurt", "lonely", "empty", "miserable", "heartbroken",
    ),
    EmotionLabel.ANGER: (
        "angry", "mad", "furious", "annoyed", "frustrated",
        "irritated", "hate", "rage", "outraged",
    ),
    EmotionLabel.FEAR: (
        "scared", "afraid", "worried", "anxious", "nervous",
        "panic", "terrified", "frightened", "concerned",
    ),
    EmotionLabel.SURPRISE: (
        "surprised", "shocked", "unexpected", "sudden", "amazed", "astonished",
    ),
    EmotionLabel.DISGUST: (
        "disgusted", "sick", "revolted", "appalled", "repulsed",
    ),
}

STRESS_KEYWORDS = ("stressed", "overwhelmed", "pressure", "deadline", "exam", "busy")
COPING_KEYWORDS = ("breathe", "exercise", "talk", "music", "sleep", "relax")

MAX_KEY_PHRASES = 3
MAX_PHRASE_LENGTH = 50

_SENTENCE_SPLIT = re.compile(r"[.!?]+")

# Whole words plus common inflections, so "made" is not "mad" and "enjoy" is not "joy"
_INFLECTIONS = r"(?:s|es|d|ed|ing)?"
_KEYWORD_PATTERNS: Dict[str, re.Pattern] = {}


def _keyword_pattern(keyword: str) -> re.Pattern:
    pattern = _KEYWORD_PATTERNS.get(keyword)
    if pattern is None:
        pattern = re.compile(r"\b" + re.escape(keyword) + _INFLECTIONS + r"\b")
        _KEYWORD_PATTERNS[keyword] = pattern
    return pattern


def _matches(lowered: str, keywords: tuple) -> List[str]:
    return [k for k in keywords if _keyword_pattern(k).search(lowered)]


def extract_key_phrases(text: str) -> List[str]:
    """First sentences of the text, trimmed to a short length."""
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    return [s[:MAX_PHRASE_LENGTH] for s in sentences[:MAX_KEY_PHRASES]]


def find_keywords(text: str, keywords: tuple) -> List[str]:
    return _matches(normalize_text(text), keywords)


def basic_analysis(text: str, source: str = "offline") -> EmotionalAnalysis:
    """Keyword-frequency emotion estimate.

    Each emotion scores twice the fraction of its keywords present, capped
    at 1. Positive sentiment follows joy, negative the strongest of sadness,
    anger and fear; the split is normalized to sum to 1.
    """
    lowered = normalize_text(text)
    scores = {}
    for label, keywords in EMOTION_KEYWORDS.items():
        hits = len(_matches(lowered, keywords))
        scores[label.value] = min(hits / len(keywords) * 2, 1.0)

    positive = scores["joy"]
    negative = max(scores["sadness"], scores["anger"], scores["fear"])
    neutral = max(0.0, 1.0 - positive - negative)

    return EmotionalAnalysis(
        sentiment=SentimentScores.normalized(positive, neutral, negative),
        emotions=EmotionScores(**scores),
        key_phrases=tuple(extract_key_phrases(text)),
        stress_indicators=tuple(find_keywords(text, STRESS_KEYWORDS)),
        coping_mechanisms=tuple(find_keywords(text, COPING_KEYWORDS)),
        source=source,
    )


class EmotionServiceClient(ABC):
    """External sentiment/emotion collaborator."""

    @abstractmethod
    async def analyze(self, text: str) -> EmotionalAnalysis:
        pass


class TransformersEmotionClient(EmotionServiceClient):
    """HuggingFace transformers pipelines for emotion and 3-way sentiment."""

    DEFAULT_EMOTION_MODEL = "j-hartmann/emotion-english-distilroberta-base"
    DEFAULT_SENTIMENT_MODEL = "cardiffnlp/twitter-roberta-base-sentiment-latest"
    MAX_CHARS = 2000  # Rough limit before tokenization

    def __init__(
        self,
        emotion_model: Optional[str] = None,
        sentiment_model: Optional[str] = None,
        device: str = "cpu",
    ):
        self.emotion_model = emotion_model or self.DEFAULT_EMOTION_MODEL
        self.sentiment_model = sentiment_model or self.DEFAULT_SENTIMENT_MODEL
        self.device = device
        self._emotion_pipeline = None
        self._sentiment_pipeline = None

    def _load(self) -> None:
        if self._emotion_pipeline is not None and self._sentiment_pipeline is not None:
            return

        from transformers import pipeline

        logger.info(
            "EMOTION_MODELS_LOADING",
            extra={
                "emotion_model": self.emotion_model,
                "sentiment_model": self.sentiment_model,
                "device": self.device,
            }
        )
        device = -1 if self.device == "cpu" else 0
        self._emotion_pipeline = pipeline(
            "text-classification", model=self.emotion_model, top_k=None,
            device=device, truncation=True,
        )
        self._sentiment_pipeline = pipeline(
            "text-classification", model=self.sentiment_model, top_k=None,
            device=device, truncation=True,
        )
        logger.info("EMOTION_MODELS_LOADED")

    def _classify(self, text: str) -> Dict[str, Any]:
        self._load()
        truncated = text[:self.MAX_CHARS]
        emotion_scores = _label_scores(self._emotion_pipeline(truncated))
        sentiment_scores = _label_scores(self._sentiment_pipeline(truncated))

        sentiment = SentimentScores.normalized(
            sentiment_scores.get("positive", 0.0),
            sentiment_scores.get("neutral", 0.0),
            sentiment_scores.get("negative", 0.0),
        )
        return {
            "sentiment": sentiment.to_dict(),
            "emotions": {
                label.value: emotion_scores.get(label.value, 0.0)
                for label in EmotionLabel.scored()
            },
            "key_phrases": extract_key_phrases(text),
            "stress_indicators": find_keywords(text, STRESS_KEYWORDS),
            "coping_mechanisms": find_keywords(text, COPING_KEYWORDS),
        }

    async def analyze(self, text: str) -> EmotionalAnalysis:
        loop = asyncio.get_running_loop()
        payload = await loop.run_in_executor(None, self._classify, text)
        return EmotionalAnalysis.from_payload(payload, source="service")


def _label_scores(output: Any) -> Dict[str, float]:
    # A single string may come back wrapped in an extra list
    if output and isinstance(output[0], list):
        output = output[0]
    return {item["label"].lower(): float(item["score"]) for item in output}


class EmotionAnalyzer:
    """Signal adapter that always returns a structurally valid analysis."""

    def __init__(
        self,
        client: Optional[EmotionServiceClient] = None,
        config: Optional[SafetyConfig] = None,
    ):
        self.client = client
        self.config = config or SafetyConfig()

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def analyze(self, text: str) -> EmotionalAnalysis:
        if self.client is None:
            return basic_analysis(text, source="offline")

        try:
            return await call_with_retry(
                lambda: self.client.analyze(text),
                SERVICE_NAME,
                timeout_seconds=self.config.sentiment_timeout_seconds,
                max_retries=self.config.max_retries,
                backoff_seconds=self.config.retry_backoff_seconds,
            )
        except ExternalServiceError as e:
            logger.warning(
                "EMOTION_ANALYSIS_FALLBACK",
                extra={"code": e.code, "retryable": e.retryable}
            )
            return basic_analysis(text, source="fallback")
