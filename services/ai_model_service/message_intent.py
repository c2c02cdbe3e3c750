import re
from enum import Enum
from typing import Iterable

from services.ai_model_service.schemas import QueryAnalysis


class MessageIntent(str, Enum):
    GENERAL = "GENERAL"
    NEWS = "NEWS"
    MARKET = "MARKET"
    EDUCATION = "EDUCATION"
    INVESTMENT = "INVESTMENT"


# Checked in order; first hit wins. Matched at the start of a word, so
# "invest" also covers "investing" / "investment".
INTENT_KEYWORDS = [
    (MessageIntent.MARKET, ["analysis", "trend", "chart", "pattern", "price", "value", "market"]),
    (MessageIntent.NEWS, ["news", "announcement", "update"]),
    (MessageIntent.INVESTMENT, ["invest", "portfolio", "allocation", "strategy", "risk", "recommend", "profit"]),
    (MessageIntent.EDUCATION, ["learn", "explain", "what is", "how to", "guide"]),
]

# Whole words (plural "s" allowed)
TECHNICAL_KEYWORDS = ["chart", "pattern", "support", "resistance", "indicator", "rsi", "macd", "technical"]
SENTIMENT_KEYWORDS = ["sentiment", "feeling", "mood", "bullish", "bearish", "fear", "greed"]
EDUCATIONAL_KEYWORDS = ["explain", "what is", "how to", "learn", "guide"]
COMPLEXITY_KEYWORDS = ["detailed", "complex", "in-depth", "comprehensive"]
URGENCY_KEYWORDS = ["urgent", "quick", "asap"]


def _starts_word(text: str, keywords: Iterable[str]) -> bool:
    return any(re.search(r'\b' + re.escape(k), text) for k in keywords)


def _has_word(text: str, keywords: Iterable[str]) -> bool:
    return any(re.search(r'\b' + re.escape(k) + r's?\b', text) for k in keywords)


def determine_message_intent(message: str) -> MessageIntent:
    lower = (message or "").lower()
    for intent, keywords in INTENT_KEYWORDS:
        if _starts_word(lower, keywords):
            return intent
    return MessageIntent.GENERAL


def analyze_query(message: str) -> QueryAnalysis:
    """Keyword classification feeding ``EnsembleConfigManager.get_optimal_configuration``."""
    lower = (message or "").lower()
    return QueryAnalysis(
        is_technical_query=_has_word(lower, TECHNICAL_KEYWORDS),
        is_sentiment_query=_has_word(lower, SENTIMENT_KEYWORDS),
        is_educational_query=_has_word(lower, EDUCATIONAL_KEYWORDS),
        complexity="high" if _has_word(lower, COMPLEXITY_KEYWORDS) else "medium",
        urgency="high" if _has_word(lower, URGENCY_KEYWORDS) else "normal",
    )
