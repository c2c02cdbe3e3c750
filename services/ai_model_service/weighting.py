"""
Weighting Strategies
====================
Pure functions mapping a non-empty list of ``ModelResponse`` to a weight
vector of the same length that sums to 1.

  confidence    w_i = c_i / sum(c)
  equal         w_i = 1 / n
  performance   historical accuracy lookup by source, normalised
  adaptive      same as confidence (kept distinct for future tuning)
  fastResponse  w_i ~ 1 / processing_time_i
  highAccuracy  w_i ~ 0.7*c_i + 0.3*(1 - |c_i - mean(c)|)

Each strategy also carries thresholds (consensus, minimum model count,
max processing time) and a fallback strategy; the orchestrator enforces
those, not the weighting functions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Sequence

from services.ai_model_service.schemas import ModelResponse


class WeightingStrategy(str, Enum):
    CONFIDENCE = "confidence"
    EQUAL = "equal"
    PERFORMANCE = "performance"
    ADAPTIVE = "adaptive"
    FAST_RESPONSE = "fastResponse"
    HIGH_ACCURACY = "highAccuracy"


# ── Historical accuracy by source name ──
PERFORMANCE_SCORES: Dict[str, float] = {
    "Gemini-2.0-Flash": 0.85,
    "FinBERT": 0.78,
    "CryptoBERT": 0.72,
    "News-RoBERTa": 0.76,
    "Technical-Analyzer": 0.70,
}
DEFAULT_PERFORMANCE_SCORE = 0.6

_MIN_PROCESSING_MS = 1.0


def _normalise(scores: List[float]) -> List[float]:
    total = sum(scores)
    if total <= 0:
        return [1.0 / len(scores)] * len(scores)
    return [s / total for s in scores]


def equal_weights(responses: Sequence[ModelResponse]) -> List[float]:
    return [1.0 / len(responses)] * len(responses)


def confidence_weights(responses: Sequence[ModelResponse]) -> List[float]:
    return _normalise([r.confidence for r in responses])


def performance_weights(responses: Sequence[ModelResponse]) -> List[float]:
    return _normalise([PERFORMANCE_SCORES.get(r.source, DEFAULT_PERFORMANCE_SCORE) for r in responses])


def adaptive_weights(responses: Sequence[ModelResponse]) -> List[float]:
    return confidence_weights(responses)


def fast_response_weights(responses: Sequence[ModelResponse]) -> List[float]:
    # local fallbacks can finish in under a millisecond
    return _normalise([1.0 / max(r.processing_time, _MIN_PROCESSING_MS) for r in responses])


def high_accuracy_weights(responses: Sequence[ModelResponse]) -> List[float]:
    confidences = [r.confidence for r in responses]
    mean = sum(confidences) / len(confidences)
    return _normalise([0.7 * c + 0.3 * (1 - abs(c - mean)) for c in confidences])


_WEIGHT_FUNCTIONS: Dict[WeightingStrategy, Callable[[Sequence[ModelResponse]], List[float]]] = {
    WeightingStrategy.CONFIDENCE: confidence_weights,
    WeightingStrategy.EQUAL: equal_weights,
    WeightingStrategy.PERFORMANCE: performance_weights,
    WeightingStrategy.ADAPTIVE: adaptive_weights,
    WeightingStrategy.FAST_RESPONSE: fast_response_weights,
    WeightingStrategy.HIGH_ACCURACY: high_accuracy_weights,
}


def compute_weights(strategy: WeightingStrategy | str, responses: Sequence[ModelResponse]) -> List[float]:
    """Weights for ``responses`` under ``strategy``. Requires at least one response."""
    if not responses:
        raise ValueError("Cannot compute weights for an empty response set")
    return _WEIGHT_FUNCTIONS[WeightingStrategy(strategy)](responses)


@dataclass(frozen=True)
class EnsembleStrategy:
    """Static description of a weighting policy."""
    name: WeightingStrategy
    label: str
    description: str
    consensus_threshold: float
    require_minimum_models: int
    max_processing_time: int          # ms
    fallback_strategy: WeightingStrategy

    def weights(self, responses: Sequence[ModelResponse]) -> List[float]:
        return compute_weights(self.name, responses)


# ── Strategy table ──
STRATEGIES: Dict[WeightingStrategy, EnsembleStrategy] = {
    WeightingStrategy.CONFIDENCE: EnsembleStrategy(
        name=WeightingStrategy.CONFIDENCE,
        label="Confidence Weighting",
        description="Models with higher confidence scores have proportionally more influence on the final response",
        consensus_threshold=0.7,
        require_minimum_models=2,
        max_processing_time=45000,
        fallback_strategy=WeightingStrategy.EQUAL,
    ),
    WeightingStrategy.EQUAL: EnsembleStrategy(
        name=WeightingStrategy.EQUAL,
        label="Equal Weighting",
        description="All models contribute equally regardless of confidence levels",
        consensus_threshold=0.6,
        require_minimum_models=2,
        max_processing_time=30000,
        fallback_strategy=WeightingStrategy.PERFORMANCE,
    ),
    WeightingStrategy.PERFORMANCE: EnsembleStrategy(
        name=WeightingStrategy.PERFORMANCE,
        label="Performance Weighting",
        description="Models are weighted based on historical accuracy and performance metrics",
        consensus_threshold=0.75,
        require_minimum_models=3,
        max_processing_time=60000,
        fallback_strategy=WeightingStrategy.CONFIDENCE,
    ),
    WeightingStrategy.ADAPTIVE: EnsembleStrategy(
        name=WeightingStrategy.ADAPTIVE,
        label="Adaptive Weighting",
        description="Dynamically adjusts model weights based on query type and context",
        consensus_threshold=0.8,
        require_minimum_models=3,
        max_processing_time=50000,
        fallback_strategy=WeightingStrategy.CONFIDENCE,
    ),
    WeightingStrategy.FAST_RESPONSE: EnsembleStrategy(
        name=WeightingStrategy.FAST_RESPONSE,
        label="Fast Response",
        description="Optimizes for speed, using fewer models with shorter timeouts",
        consensus_threshold=0.6,
        require_minimum_models=2,
        max_processing_time=15000,
        fallback_strategy=WeightingStrategy.EQUAL,
    ),
    WeightingStrategy.HIGH_ACCURACY: EnsembleStrategy(
        name=WeightingStrategy.HIGH_ACCURACY,
        label="High Accuracy",
        description="Uses all available models with emphasis on consensus and validation",
        consensus_threshold=0.85,
        require_minimum_models=4,
        max_processing_time=90000,
        fallback_strategy=WeightingStrategy.PERFORMANCE,
    ),
}


def get_strategy(name: WeightingStrategy | str) -> EnsembleStrategy:
    """Look up a strategy by enum or name. Raises ``ValueError`` for unknown names."""
    return STRATEGIES[WeightingStrategy(name)]


def resolve_strategy(name: WeightingStrategy | str, response_count: int) -> EnsembleStrategy:
    """
    Follow the fallback chain from ``name`` to the first strategy whose
    minimum model count ``response_count`` satisfies. If the chain loops
    back without one, the requested strategy is kept.
    """
    requested = get_strategy(name)
    current = requested
    seen = set()
    while current.name not in seen:
        if response_count >= current.require_minimum_models:
            return current
        seen.add(current.name)
        current = STRATEGIES[current.fallback_strategy]
    return requested
