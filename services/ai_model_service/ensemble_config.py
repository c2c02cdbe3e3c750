"""
EnsembleConfigManager — Model Metadata, Query Routing, Performance History
==========================================================================
Holds the static per-model table (cost, rate limits, strengths, timeouts),
picks an "optimal" model subset + weighting strategy for a classified query,
and keeps a rolling performance history per model.

Performance history:
  - process memory only, lost on restart
  - at most ``history_limit`` samples per model (default 100), oldest dropped
  - samples are appended, never edited; a single lock guards all models
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from pydantic import ValidationError

from shared.config import settings
from services.ai_model_service.errors import QueryValidationError
from services.ai_model_service.schemas import ModelPerformance, OptimalConfiguration, QueryAnalysis
from services.ai_model_service.weighting import STRATEGIES, WeightingStrategy

logger = logging.getLogger("ensemble_config")


@dataclass
class RateLimit:
    requests_per_minute: int
    burst_limit: int


@dataclass
class ModelConfig:
    """Static metadata for one ensemble member."""
    name: str
    enabled: bool = True
    endpoint: Optional[str] = None
    weight: float = 1.0
    timeout: int = 30000              # ms
    retries: int = 2
    fallback_enabled: bool = True
    rate_limit: RateLimit = field(default_factory=lambda: RateLimit(60, 10))
    cost_per_request: float = 0.0     # USD
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    optimal_use_cases: List[str] = field(default_factory=list)
    minimum_confidence_threshold: float = 0.5


@dataclass
class PerformanceSample:
    response_time: float              # ms
    confidence: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    accuracy: Optional[float] = None


@dataclass
class GlobalSettings:
    max_concurrent_requests: int = 5
    global_timeout: int = 60000       # ms
    enable_fallbacks: bool = True
    log_performance_metrics: bool = True
    cache_responses: bool = True
    cache_ttl: int = 300000           # ms


@dataclass
class QualityThresholds:
    minimum_consensus: float = 0.6
    maximum_response_time: int = 45000
    minimum_model_count: int = 2
    confidence_threshold: float = 0.5


@dataclass
class CostManagement:
    daily_budget_limit: float = 50.0
    cost_per_request_limit: float = 0.25
    enable_cost_optimization: bool = True
    prefer_lower_cost_models: bool = False


@dataclass
class EnsembleConfig:
    models: Dict[str, ModelConfig]
    default_strategy: str = "confidence"
    global_settings: GlobalSettings = field(default_factory=GlobalSettings)
    quality_thresholds: QualityThresholds = field(default_factory=QualityThresholds)
    cost_management: CostManagement = field(default_factory=CostManagement)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EnsembleConfig":
        """Build from plain dicts. Raises ``ValueError`` / ``TypeError`` on malformed input."""
        if not isinstance(data, dict):
            raise ValueError(f"Configuration must be an object, got {type(data).__name__}")
        return cls(
            models=models_from_dict(data.get("models", {})),
            default_strategy=data.get("default_strategy", "confidence"),
            global_settings=GlobalSettings(**_section(data, "global_settings")),
            quality_thresholds=QualityThresholds(**_section(data, "quality_thresholds")),
            cost_management=CostManagement(**_section(data, "cost_management")),
        )


def _section(data: dict, key: str) -> dict:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"Section '{key}' must be an object")
    return value


def models_from_dict(raw_models: Any) -> Dict[str, ModelConfig]:
    """Turn ``{key: {...}}`` into ``ModelConfig`` objects; ``ModelConfig`` values pass through."""
    if not isinstance(raw_models, dict):
        raise ValueError("Section 'models' must be an object")
    models = {}
    for key, raw in raw_models.items():
        if isinstance(raw, ModelConfig):
            models[key] = raw
            continue
        if not isinstance(raw, dict):
            raise ValueError(f"Model '{key}' must be an object")
        raw = dict(raw)
        rl = raw.pop("rate_limit", None) or {}
        if isinstance(rl, RateLimit):
            rate_limit = rl
        elif isinstance(rl, dict):
            rate_limit = RateLimit(**rl) if rl else RateLimit(60, 10)
        else:
            raise ValueError(f"Model '{key}': rate_limit must be an object")
        models[key] = ModelConfig(rate_limit=rate_limit, **raw)
    return models


def _as(section_cls):
    def parse(value):
        if isinstance(value, section_cls):
            return value
        if not isinstance(value, dict):
            raise ValueError(f"{section_cls.__name__} must be an object")
        return section_cls(**value)
    return parse


def _strategy_name(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("default_strategy must be a string")
    return value


# section name → parser used by update_configuration
_SECTION_PARSERS = {
    "models": models_from_dict,
    "default_strategy": _strategy_name,
    "global_settings": _as(GlobalSettings),
    "quality_thresholds": _as(QualityThresholds),
    "cost_management": _as(CostManagement),
}


# ── Default model table ──
DEFAULT_MODELS: Dict[str, ModelConfig] = {
    "gemini": ModelConfig(
        name="Gemini-2.0-Flash",
        weight=1.0,
        timeout=30000,
        retries=2,
        rate_limit=RateLimit(60, 10),
        cost_per_request=0.02,
        strengths=["comprehensive_reasoning", "context_understanding", "educational_content",
                   "market_interpretation", "risk_assessment"],
        weaknesses=["processing_speed", "specialized_terminology", "real_time_data"],
        optimal_use_cases=["complex_analysis", "educational_queries", "market_interpretation",
                           "risk_assessment", "strategic_advice"],
        minimum_confidence_threshold=0.7,
    ),
    "finbert": ModelConfig(
        name="FinBERT",
        endpoint="ProsusAI/finbert",
        weight=0.8,
        timeout=15000,
        retries=3,
        rate_limit=RateLimit(100, 20),
        cost_per_request=0.001,
        strengths=["financial_sentiment", "market_terminology", "news_analysis",
                   "risk_indicators", "economic_context"],
        weaknesses=["general_conversation", "technical_analysis", "crypto_specific_terms"],
        optimal_use_cases=["sentiment_analysis", "news_interpretation",
                           "financial_document_analysis", "market_mood_assessment"],
        minimum_confidence_threshold=0.6,
    ),
    "cryptobert": ModelConfig(
        name="CryptoBERT",
        endpoint="ElKulako/cryptobert",
        weight=0.7,
        timeout=12000,
        retries=3,
        rate_limit=RateLimit(80, 15),
        cost_per_request=0.0015,
        strengths=["crypto_terminology", "community_sentiment", "defi_concepts",
                   "blockchain_terminology", "trading_slang", "social_media_analysis"],
        weaknesses=["formal_financial_analysis", "traditional_markets", "regulatory_content"],
        optimal_use_cases=["crypto_sentiment_analysis", "social_media_monitoring", "community_feedback",
                           "meme_coin_analysis", "defi_protocol_sentiment"],
        minimum_confidence_threshold=0.65,
    ),
    "newsRoberta": ModelConfig(
        name="News-RoBERTa",
        endpoint="cardiffnlp/twitter-roberta-base-sentiment-latest",
        weight=0.6,
        timeout=10000,
        retries=3,
        rate_limit=RateLimit(120, 25),
        cost_per_request=0.0008,
        strengths=["news_classification", "social_media_sentiment", "trending_topic_analysis",
                   "real_time_sentiment", "short_text_analysis"],
        weaknesses=["long_form_content", "technical_analysis", "financial_terminology"],
        optimal_use_cases=["breaking_news_analysis", "social_media_monitoring",
                           "trend_detection", "public_sentiment_tracking"],
        minimum_confidence_threshold=0.6,
    ),
    "technicalAnalyzer": ModelConfig(
        name="Technical-Analyzer",
        endpoint="facebook/blenderbot-400M-distill",
        weight=0.7,
        timeout=8000,
        retries=2,
        rate_limit=RateLimit(200, 50),
        cost_per_request=0.0005,
        strengths=["price_pattern_recognition", "volume_analysis", "trend_identification",
                   "support_resistance", "indicator_interpretation"],
        weaknesses=["fundamental_analysis", "news_interpretation", "sentiment_analysis"],
        optimal_use_cases=["chart_analysis", "trading_signals", "pattern_recognition",
                           "technical_indicators"],
        minimum_confidence_threshold=0.65,
    ),
}


def default_config() -> EnsembleConfig:
    return EnsembleConfig(
        models=copy.deepcopy(DEFAULT_MODELS),
        default_strategy=settings.ENSEMBLE_DEFAULT_STRATEGY,
    )


class EnsembleConfigManager:
    """
    Usage::

        manager = EnsembleConfigManager()
        plan = manager.get_optimal_configuration(QueryAnalysis(is_sentiment_query=True))
        manager.update_performance_metrics("finbert", PerformanceSample(420, 0.81))
        manager.get_model_performance("finbert").average_confidence
    """

    def __init__(self, config: Optional[EnsembleConfig] = None, history_limit: int = 0):
        self._config = config or default_config()
        self.history_limit = history_limit or settings.PERFORMANCE_HISTORY_LIMIT
        self._history: Dict[str, Deque[PerformanceSample]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Model table
    # ------------------------------------------------------------------

    @property
    def models(self) -> Dict[str, ModelConfig]:
        return self._config.models

    @property
    def config(self) -> EnsembleConfig:
        return self._config

    def get_model(self, key: str) -> Optional[ModelConfig]:
        return self._config.models.get(key)

    def is_enabled(self, key: str) -> bool:
        model = self._config.models.get(key)
        return bool(model and model.enabled)

    # ------------------------------------------------------------------
    # Query routing
    # ------------------------------------------------------------------

    def get_optimal_configuration(self, query_analysis: QueryAnalysis | dict) -> OptimalConfiguration:
        """Pick models, strategy, timeout and expected cost for a classified query."""
        if isinstance(query_analysis, QueryAnalysis):
            qa = query_analysis
        else:
            try:
                qa = QueryAnalysis.model_validate(query_analysis)
            except ValidationError as e:
                raise QueryValidationError(f"Invalid query analysis: {e}")

        enabled_models = ["gemini"]
        strategy = self._config.default_strategy
        timeout = self._config.global_settings.global_timeout

        if qa.is_sentiment_query:
            enabled_models += ["finbert", "cryptobert", "newsRoberta"]
        if qa.is_technical_query:
            enabled_models += ["technicalAnalyzer", "finbert"]
        if qa.is_educational_query:
            enabled_models.append("finbert")
            strategy = WeightingStrategy.CONFIDENCE.value

        enabled_models = list(dict.fromkeys(enabled_models))

        if qa.urgency == "high":
            strategy = WeightingStrategy.FAST_RESPONSE.value
            timeout = 15000
            enabled_models = enabled_models[:2]
        elif qa.complexity == "high":
            strategy = WeightingStrategy.HIGH_ACCURACY.value
            timeout = 60000

        enabled_models = [k for k in enabled_models if self.is_enabled(k)]
        expected_cost = sum(self._config.models[k].cost_per_request for k in enabled_models)

        limit = self._config.cost_management.cost_per_request_limit
        if expected_cost > limit:
            logger.warning(f"[Config] Expected cost ${expected_cost:.4f} exceeds per-request limit ${limit:.2f}")

        return OptimalConfiguration(
            enabled_models=enabled_models,
            strategy=strategy,
            timeout=timeout,
            expected_cost=round(expected_cost, 6),
        )

    # ------------------------------------------------------------------
    # Performance history
    # ------------------------------------------------------------------

    def update_performance_metrics(self, model_name: str, sample: PerformanceSample) -> None:
        """Append one observation; keeps at most ``history_limit`` per model."""
        with self._lock:
            history = self._history.get(model_name)
            if history is None:
                history = deque(maxlen=self.history_limit)
                self._history[model_name] = history
            history.append(sample)

    def get_model_performance(self, model_name: str) -> ModelPerformance:
        with self._lock:
            history = list(self._history.get(model_name, ()))

        if not history:
            return ModelPerformance(
                model_name=model_name,
                has_data=False,
                message="No performance data available",
            )

        n = len(history)
        model = self._config.models.get(model_name)
        threshold = model.minimum_confidence_threshold if model else 0.5
        avg_time = sum(s.response_time for s in history) / n
        avg_conf = sum(s.confidence for s in history) / n
        successes = sum(1 for s in history if s.confidence > threshold)

        return ModelPerformance(
            model_name=model_name,
            has_data=True,
            average_response_time=round(avg_time),
            average_confidence=round(avg_conf, 3),
            success_rate=round(successes / n, 3),
            total_requests=n,
            last_updated=history[-1].timestamp,
        )

    def history_size(self, model_name: str) -> int:
        with self._lock:
            return len(self._history.get(model_name, ()))

    def reset_history(self) -> None:
        with self._lock:
            self._history.clear()

    # ------------------------------------------------------------------
    # Validation / import / export
    # ------------------------------------------------------------------

    @staticmethod
    def validate(config: EnsembleConfig) -> List[str]:
        errors: List[str] = []

        if not any(m.enabled for m in config.models.values()):
            errors.append("At least one model must be enabled")

        try:
            WeightingStrategy(config.default_strategy)
        except ValueError:
            errors.append(f"Default strategy '{config.default_strategy}' not found")

        for key, model in config.models.items():
            if model.weight < 0 or model.weight > 2:
                errors.append(f"Model {key}: weight must be between 0 and 2")
            if model.timeout < 1000 or model.timeout > 120000:
                errors.append(f"Model {key}: timeout must be between 1000 and 120000 ms")
            if model.minimum_confidence_threshold < 0 or model.minimum_confidence_threshold > 1:
                errors.append(f"Model {key}: confidence threshold must be between 0 and 1")

        return errors

    def validate_configuration(self) -> Dict[str, Any]:
        errors = self.validate(self._config)
        return {"valid": not errors, "errors": errors}

    def export_configuration(self) -> str:
        return json.dumps(self._config.to_dict(), indent=2)

    def import_configuration(self, config_json: str) -> bool:
        try:
            candidate = EnsembleConfig.from_dict(json.loads(config_json))
            errors = self.validate(candidate)
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"[Config] Failed to import configuration: {e}")
            return False

        if errors:
            logger.error(f"[Config] Invalid configuration: {errors}")
            return False

        self._config = candidate
        return True

    def update_configuration(self, **changes: Any) -> bool:
        """
        Replace top-level sections (``models``, ``default_strategy``, ...).
        Sections may be given as dataclasses or plain dicts; rolls back if invalid.
        """
        previous = self._config
        try:
            candidate = copy.deepcopy(previous)
            for key, value in changes.items():
                if key not in _SECTION_PARSERS:
                    raise TypeError(f"Unknown configuration section '{key}'")
                setattr(candidate, key, _SECTION_PARSERS[key](value))
            errors = self.validate(candidate)
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"[Config] Failed to update configuration: {e}")
            return False

        if errors:
            logger.error(f"[Config] Configuration update failed validation: {errors}")
            return False

        self._config = candidate
        return True

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def describe_models(self) -> Dict[str, Any]:
        """Model + strategy overview with live performance, for a model-info view."""
        models = []
        for key, model in self._config.models.items():
            perf = self.get_model_performance(key)
            models.append({
                "key": key,
                "name": model.name,
                "type": "Large Language Model" if key == "gemini" else (model.endpoint or "AI Model"),
                "strengths": model.strengths,
                "use_cases": model.optimal_use_cases,
                "enabled": model.enabled,
                "avg_confidence": f"{perf.average_confidence * 100:.1f}%" if perf.has_data else "No data",
                "avg_response_time": f"{perf.average_response_time}ms" if perf.has_data else "No data",
                "cost_per_request": f"${model.cost_per_request:.4f}",
                "rate_limit": f"{model.rate_limit.requests_per_minute}/min",
            })

        strategies = []
        for s in STRATEGIES.values():
            if s.require_minimum_models == 2:
                recommended = "Fast responses"
            elif s.require_minimum_models >= 4:
                recommended = "High accuracy needs"
            else:
                recommended = "General use"
            strategies.append({
                "key": s.name.value,
                "name": s.label,
                "description": s.description,
                "recommended": recommended,
                "consensus_threshold": f"{s.consensus_threshold * 100:.1f}%",
                "max_processing_time": f"{s.max_processing_time}ms",
            })

        gs = self._config.global_settings
        return {
            "available_models": models,
            "ensemble_strategies": strategies,
            "current_configuration": {
                "default_strategy": self._config.default_strategy,
                "max_models": gs.max_concurrent_requests,
                "timeout_ms": gs.global_timeout,
                "fallback_enabled": gs.enable_fallbacks,
                "cost_optimization": self._config.cost_management.enable_cost_optimization,
                "daily_budget_limit": f"${self._config.cost_management.daily_budget_limit:.2f}",
            },
        }


# Singleton
ensemble_config_manager = EnsembleConfigManager()
