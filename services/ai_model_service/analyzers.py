"""
Model Analyzers
===============
Five analyzers, each turning (query, market context) into one
``ModelResponse``:

  GeneralReasoningAnalyzer   gemini             no local fallback (raises)
  FinancialSentimentAnalyzer finbert            no local fallback (raises)
  CryptoSentimentAnalyzer    cryptobert         keyword heuristic fallback
  NewsSentimentAnalyzer      newsRoberta        no local fallback (raises)
  TechnicalPatternAnalyzer   technicalAnalyzer  rule-based fallback

Transient backend errors (429/502/503/504) are retried here, up to the
model's configured ``retries``; timeouts are not retried.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from shared.config import settings
from shared.models import CoinSnapshot, MarketContext
from services.ai_model_service.errors import BackendError
from services.ai_model_service.model_router import ModelRouter
from services.ai_model_service.prompts import prompt_registry
from services.ai_model_service.schemas import (
    ModelResponse,
    SentimentPayload,
    SentimentReading,
    TechnicalPayload,
    TextPayload,
)

logger = logging.getLogger("analyzers")


# ── Label normalisation across classifier vocabularies ──
_LABEL_MAP = {
    "positive": "positive",
    "bullish": "positive",
    "label_2": "positive",
    "negative": "negative",
    "bearish": "negative",
    "label_0": "negative",
    "neutral": "neutral",
    "label_1": "neutral",
}

# ── Crypto slang lexicon for the keyword fallback ──
CRYPTO_POSITIVE = ["moon", "hodl", "bullish", "pump", "rally", "breakout"]
CRYPTO_NEGATIVE = ["dump", "crash", "bearish", "rekt", "fud", "dip"]

HIGH_VOLUME_USD = 100_000_000


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def normalise_label(label: str) -> str:
    return _LABEL_MAP.get(str(label).strip().lower(), str(label).strip().lower())


def parse_classification(raw: Any) -> List[Tuple[str, float]]:
    """
    Flatten a classifier response into ``[(label, score), ...]`` sorted by
    score, highest first. Accepts ``{label, score}``, a list of those, or
    a list of lists (HuggingFace batches one input as ``[[...]]``).
    """
    if isinstance(raw, dict):
        items = [raw]
    elif isinstance(raw, list):
        items = raw[0] if raw and isinstance(raw[0], list) else raw
    else:
        items = []

    parsed = []
    for item in items:
        if not isinstance(item, dict) or "label" not in item:
            continue
        score = item.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            continue
        parsed.append((normalise_label(item["label"]), min(1.0, max(0.0, float(score)))))
    parsed.sort(key=lambda p: p[1], reverse=True)
    return parsed


def extract_generated_text(raw: Any) -> str:
    """Pull the text out of a generation response of unknown shape."""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list) and raw:
        raw = raw[0]
    if isinstance(raw, dict):
        for key in ("generated_text", "summary_text", "text"):
            if isinstance(raw.get(key), str):
                return raw[key]
    return json.dumps(raw, default=str)


def average_confidence(readings: List[SentimentReading]) -> float:
    scores = [r.score for r in readings if r.score > 0]
    return sum(scores) / len(scores) if scores else 0.5


def aggregate_label(readings: List[SentimentReading]) -> str:
    if not readings:
        return "neutral"
    totals: Dict[str, float] = defaultdict(float)
    for r in readings:
        totals[r.label] += r.score
    return max(totals.items(), key=lambda kv: kv[1])[0]


# ──────────────────────────────────────────────────────────────────
# Base Analyzer
# ──────────────────────────────────────────────────────────────────
class BaseAnalyzer(ABC):
    """Abstract base for every ensemble member."""

    model_key = ""
    source = ""
    payload_type = ""
    strengths: List[str] = []

    def __init__(self, router: ModelRouter):
        self.router = router

    @property
    def backend(self):
        return self.router.get_backend(self.model_key)

    async def analyze(
        self,
        query: str,
        context: Optional[Dict[str, Any]] = None,
        timeout_ms: Optional[int] = None,
    ) -> ModelResponse:
        ctx = MarketContext.from_raw(context)
        raw = context if isinstance(context, dict) else ctx.model_dump(by_alias=True, exclude_none=True)
        return await self._analyze(query, ctx, raw, timeout_ms)

    @abstractmethod
    async def _analyze(
        self,
        query: str,
        ctx: MarketContext,
        raw_context: Dict[str, Any],
        timeout_ms: Optional[int],
    ) -> ModelResponse:
        pass

    async def call_backend(self, input_text: str, timeout_ms: Optional[int] = None) -> Any:
        """One backend call with retry of transient errors."""
        backend = self.backend
        endpoint = self.router.get_endpoint(self.model_key)
        timeout = self.router.get_timeout(self.model_key, timeout_ms)
        retries = self.router.get_retries(self.model_key)

        for attempt in range(retries + 1):
            try:
                return await backend.call(endpoint, input_text, timeout)
            except BackendError as e:
                if not e.is_transient or attempt >= retries:
                    raise
                wait = settings.BACKEND_RETRY_BACKOFF_SECONDS * (2 ** attempt)
                logger.warning(f"[{self.source}] attempt {attempt + 1} failed: {e}. Retrying in {wait}s...")
                await asyncio.sleep(wait)

    async def classify(self, text: str, timeout_ms: Optional[int] = None) -> SentimentReading:
        raw = await self.call_backend(text, timeout_ms)
        parsed = parse_classification(raw)
        if not parsed:
            raise BackendError(None, f"Malformed classification payload: {str(raw)[:200]}", self.model_key)
        label, score = parsed[0]
        return SentimentReading(text=text, label=label, score=score)

    def _response(self, confidence: float, data, start: float, source: str = "") -> ModelResponse:
        return ModelResponse(
            source=source or self.source,
            model_key=self.model_key,
            confidence=round(min(1.0, max(0.0, confidence)), 4),
            data=data,
            processing_time=_elapsed_ms(start),
        )


# ──────────────────────────────────────────────────────────────────
# General reasoning (LLM)
# ──────────────────────────────────────────────────────────────────
class GeneralReasoningAnalyzer(BaseAnalyzer):
    model_key = "gemini"
    source = "Gemini-2.0-Flash"
    payload_type = "comprehensive_analysis"
    strengths = ["reasoning", "context_understanding", "education"]
    # free text carries no score of its own
    CONFIDENCE = 0.85

    async def _analyze(self, query, ctx, raw_context, timeout_ms):
        start = time.perf_counter()
        prompt = prompt_registry.get_prompt(
            "general_analysis",
            query=query,
            context=json.dumps(raw_context, indent=2, default=str),
        )
        text = await self.call_backend(prompt, timeout_ms)
        return self._response(
            self.CONFIDENCE,
            TextPayload(type=self.payload_type, analysis=str(text), strengths=self.strengths),
            start,
        )


# ──────────────────────────────────────────────────────────────────
# Financial sentiment
# ──────────────────────────────────────────────────────────────────
class FinancialSentimentAnalyzer(BaseAnalyzer):
    model_key = "finbert"
    source = "FinBERT"
    payload_type = "financial_sentiment"
    strengths = ["financial_terminology", "sentiment_accuracy"]

    @staticmethod
    def context_sentences(ctx: MarketContext) -> List[str]:
        sentences = []
        coin = ctx.top_coin
        if coin is not None:
            change = coin.change_pct
            name = coin.name or coin.symbol or "The top asset"
            sentences.append(f"{name} is {'up' if change > 0 else 'down'} {abs(change):.2f}%")
        stats = ctx.stats
        if stats is not None and stats.total_market_cap is not None and stats.previous_market_cap is not None:
            trend = "growing" if stats.total_market_cap > stats.previous_market_cap else "declining"
            sentences.append(f"Market cap is {trend}")
        return sentences

    async def _analyze(self, query, ctx, raw_context, timeout_ms):
        start = time.perf_counter()
        texts = [query] + self.context_sentences(ctx)
        readings = list(await asyncio.gather(*(self.classify(t, timeout_ms) for t in texts)))
        return self._response(
            average_confidence(readings),
            SentimentPayload(
                type=self.payload_type,
                label=readings[0].label,
                score=readings[0].score,
                readings=readings,
                strengths=self.strengths,
            ),
            start,
        )


# ──────────────────────────────────────────────────────────────────
# Crypto sentiment (+ keyword fallback)
# ──────────────────────────────────────────────────────────────────
class CryptoSentimentAnalyzer(BaseAnalyzer):
    model_key = "cryptobert"
    source = "CryptoBERT"
    payload_type = "crypto_sentiment"
    strengths = ["crypto_terminology", "community_sentiment"]
    FALLBACK_SOURCE = "Crypto-Keywords"

    async def _analyze(self, query, ctx, raw_context, timeout_ms):
        start = time.perf_counter()
        try:
            reading = await self.classify(query, timeout_ms)
        except Exception as e:
            logger.warning(f"[{self.source}] backend unavailable ({e!r}); using keyword analysis")
            return self.keyword_analysis(query, start)

        return self._response(
            reading.score or 0.7,
            SentimentPayload(
                type=self.payload_type,
                label=reading.label,
                score=reading.score,
                readings=[reading],
                strengths=self.strengths,
            ),
            start,
        )

    def keyword_analysis(self, query: str, start: Optional[float] = None) -> ModelResponse:
        """Slang-lexicon sentiment; confidence grows 0.1 per winning match, capped at 0.8."""
        start = start if start is not None else time.perf_counter()
        text = query.lower()
        positive = sum(1 for w in CRYPTO_POSITIVE if w in text)
        negative = sum(1 for w in CRYPTO_NEGATIVE if w in text)

        sentiment, confidence = "neutral", 0.5
        if positive > negative:
            sentiment, confidence = "positive", min(0.8, 0.5 + positive * 0.1)
        elif negative > positive:
            sentiment, confidence = "negative", min(0.8, 0.5 + negative * 0.1)

        return self._response(
            confidence,
            SentimentPayload(
                type="crypto_keyword_analysis",
                label=sentiment,
                score=confidence,
                positive_matches=positive,
                negative_matches=negative,
            ),
            start,
            source=self.FALLBACK_SOURCE,
        )


# ──────────────────────────────────────────────────────────────────
# News sentiment
# ──────────────────────────────────────────────────────────────────
class NewsSentimentAnalyzer(BaseAnalyzer):
    model_key = "newsRoberta"
    source = "News-RoBERTa"
    payload_type = "news_analysis"
    strengths = ["news_interpretation", "social_sentiment"]
    MAX_HEADLINES = 3

    async def _analyze(self, query, ctx, raw_context, timeout_ms):
        start = time.perf_counter()
        texts = [t for t in [query] + ctx.headlines(self.MAX_HEADLINES) if t]
        readings = list(await asyncio.gather(*(self.classify(t, timeout_ms) for t in texts)))
        label = aggregate_label(readings)
        return self._response(
            average_confidence(readings),
            SentimentPayload(
                type=self.payload_type,
                label=label,
                score=round(average_confidence(readings), 4),
                readings=readings,
                strengths=self.strengths,
            ),
            start,
        )


# ──────────────────────────────────────────────────────────────────
# Technical patterns (+ rule-based fallback)
# ──────────────────────────────────────────────────────────────────
def classify_price_change(change_pct: float) -> str:
    if change_pct > 5:
        return "strong bullish"
    if change_pct > 2:
        return "moderate bullish"
    if change_pct < -5:
        return "strong bearish"
    if change_pct < -2:
        return "moderate bearish"
    return "sideways"


def classify_volume(volume: float) -> str:
    return "high" if volume > HIGH_VOLUME_USD else "normal"


_CHANGE_LINES = {
    "strong bullish": "- Strong bullish momentum detected",
    "moderate bullish": "- Moderate upward movement",
    "sideways": "- Sideways price action",
    "moderate bearish": "- Moderate downward pressure",
    "strong bearish": "- Strong bearish pressure",
}
_VOLUME_LINES = {
    "high": "- High trading volume indicates strong interest",
    "normal": "- Normal trading volume",
}


def _fmt(num: Optional[float]) -> str:
    return "N/A" if num is None else f"{num:.2f}"


class TechnicalPatternAnalyzer(BaseAnalyzer):
    model_key = "technicalAnalyzer"
    source = "Technical-Analyzer"
    payload_type = "technical_analysis"
    strengths = ["price_patterns", "volume_analysis", "trend_identification"]
    FALLBACK_SOURCE = "Rule-Based-Technical"
    CONFIDENCE = 0.75
    FALLBACK_CONFIDENCE = 0.6
    NO_DATA_CONFIDENCE = 0.3

    @staticmethod
    def metrics(coin: CoinSnapshot) -> Dict[str, Optional[float]]:
        return {
            "price": coin.price,
            "price_change": coin.change_pct,
            "volume": coin.volume_24h or 0.0,
            "market_cap": coin.market_cap,
        }

    async def _analyze(self, query, ctx, raw_context, timeout_ms):
        start = time.perf_counter()
        coin = ctx.primary_coin
        if coin is None:
            return self._response(
                self.NO_DATA_CONFIDENCE,
                TechnicalPayload(type="insufficient_data", analysis="Insufficient technical data for analysis"),
                start,
            )

        metrics = self.metrics(coin)
        summary = prompt_registry.get_prompt(
            "technical_summary",
            price=_fmt(coin.price),
            change=_fmt(coin.change_pct),
            volume=_fmt(coin.volume_24h),
            market_cap=_fmt(coin.market_cap),
            query=query,
        )
        try:
            raw = await self.call_backend(summary, timeout_ms)
        except Exception as e:
            logger.warning(f"[{self.source}] backend unavailable ({e!r}); using rule-based analysis")
            return self.rule_based_analysis(coin, start)

        return self._response(
            self.CONFIDENCE,
            TechnicalPayload(
                type=self.payload_type,
                analysis=extract_generated_text(raw),
                classification=classify_price_change(metrics["price_change"]),
                volume_profile=classify_volume(metrics["volume"]),
                metrics=metrics,
                strengths=self.strengths,
            ),
            start,
        )

    def rule_based_analysis(self, coin: CoinSnapshot, start: Optional[float] = None) -> ModelResponse:
        """Deterministic read of 24h change and volume."""
        start = start if start is not None else time.perf_counter()
        metrics = self.metrics(coin)
        classification = classify_price_change(metrics["price_change"])
        volume_profile = classify_volume(metrics["volume"])
        analysis = "\n".join([
            f"Technical Analysis for {coin.name or 'Asset'}:",
            _CHANGE_LINES[classification],
            _VOLUME_LINES[volume_profile],
        ]) + "\n"
        return self._response(
            self.FALLBACK_CONFIDENCE,
            TechnicalPayload(
                type="rule_based_technical",
                analysis=analysis,
                classification=classification,
                volume_profile=volume_profile,
                metrics=metrics,
            ),
            start,
            source=self.FALLBACK_SOURCE,
        )


ANALYZER_CLASSES = {
    cls.model_key: cls
    for cls in (
        GeneralReasoningAnalyzer,
        FinancialSentimentAnalyzer,
        CryptoSentimentAnalyzer,
        NewsSentimentAnalyzer,
        TechnicalPatternAnalyzer,
    )
}


def build_analyzers(router: ModelRouter) -> Dict[str, BaseAnalyzer]:
    return {key: cls(router) for key, cls in ANALYZER_CLASSES.items()}
