"""Observer Service: emotional signal and per-user conversation state.

Key responsibilities:
- Emotion and sentiment analysis for every message, with a keyword
  fallback when the model collaborator is unavailable
- A bounded ConversationContext per user: rolling message history, the
  derived emotional state, personalized prompts and recent safety flags
- Session roll-over and idle eviction driven by a ContextExpiryPolicy
"""

from .emotion_analyzer import (
    EmotionAnalyzer,
    EmotionServiceClient,
    TransformersEmotionClient,
    basic_analysis,
)
from .context_repository import ContextExpiryPolicy, ContextRepository, InMemoryContextRepository
from .state_tracker import EmotionalStateTracker, PersonalizationInsights

__all__ = [
    "EmotionAnalyzer",
    "EmotionServiceClient",
    "TransformersEmotionClient",
    "basic_analysis",
    "ContextExpiryPolicy",
    "ContextRepository",
    "InMemoryContextRepository",
    "EmotionalStateTracker",
    "PersonalizationInsights",
]
