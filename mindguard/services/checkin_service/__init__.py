"""Check-in Service: long-window mood patterns and proactive check-in triggers.

Reads day-scale MessageSummary history from a MessageHistoryStore and
detects mood decline, stress spikes, inactivity and concerning language.
"""

from .history_store import (
    InMemoryMessageHistoryStore,
    MessageHistoryStore,
    MessageSummaryRepository,
)
from .pattern_analyzer import PatternAnalyzer, mood_trend

__all__ = [
    "InMemoryMessageHistoryStore",
    "MessageHistoryStore",
    "MessageSummaryRepository",
    "PatternAnalyzer",
    "mood_trend",
]
