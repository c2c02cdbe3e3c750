"""
Ensemble Orchestrator
=====================
One request, end to end:

  validate query + credentials
    → fan out to the enabled analyzers (all settle, none aborts the rest)
    → drop failures, score consensus, resolve strategy, weight
    → synthesize (LLM, else local)
    → record per-model performance
    → EnsembleResponse

Only an empty query, an unknown strategy or missing credentials raise.
Every other failure degrades the response instead.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from services.ai_model_service.analyzers import BaseAnalyzer, build_analyzers
from services.ai_model_service.consensus import APOLOGY, ConsensusEngine, consensus_engine
from services.ai_model_service.ensemble_config import (
    EnsembleConfigManager,
    PerformanceSample,
    ensemble_config_manager,
)
from services.ai_model_service.errors import ConfigurationError, QueryValidationError
from services.ai_model_service.model_router import ModelRouter
from services.ai_model_service.schemas import EnsembleOptions, EnsembleResponse, ModelResponse
from services.ai_model_service.weighting import get_strategy, resolve_strategy

logger = logging.getLogger("ensemble")

# option flag → model key
OPTION_MODELS = {
    "use_gemini": "gemini",
    "use_financial_bert": "finbert",
    "use_crypto_bert": "cryptobert",
    "use_news_analysis": "newsRoberta",
    "use_technical_analysis": "technicalAnalyzer",
}

NO_RESPONSE_METHODOLOGY = "No models were able to generate a response"
ERROR_METHODOLOGY = "Analysis failed due to technical error"


class EnsembleOrchestrator:
    def __init__(
        self,
        config_manager: Optional[EnsembleConfigManager] = None,
        router: Optional[ModelRouter] = None,
        analyzers: Optional[Dict[str, BaseAnalyzer]] = None,
        consensus: Optional[ConsensusEngine] = None,
    ):
        self.config_manager = config_manager or ensemble_config_manager
        self.router = router or ModelRouter(self.config_manager)
        self.analyzers = analyzers if analyzers is not None else build_analyzers(self.router)
        self.consensus = consensus or consensus_engine

    def enabled_models(self, options: EnsembleOptions) -> List[str]:
        """Model keys switched on by ``options`` and enabled in config."""
        keys = []
        for flag, key in OPTION_MODELS.items():
            if not getattr(options, flag):
                continue
            if not self.config_manager.is_enabled(key) or key not in self.analyzers:
                logger.info(f"[Ensemble] {key} requested but disabled, skipping")
                continue
            keys.append(key)
        return keys

    async def generate_ensemble_response(
        self,
        query: str,
        market_context: Optional[Dict[str, Any]] = None,
        options: Union[EnsembleOptions, Dict[str, Any], None] = None,
    ) -> EnsembleResponse:
        start = time.perf_counter()

        # 1. Validation (raised to the caller)
        if not isinstance(query, str) or not query.strip():
            raise QueryValidationError("Query must be a non-empty string")
        if options is None:
            options = EnsembleOptions()
        elif isinstance(options, dict):
            try:
                options = EnsembleOptions.model_validate(options)
            except ValidationError as e:
                raise QueryValidationError(f"Invalid ensemble options: {e}")
        try:
            requested = get_strategy(options.weighting_strategy)
        except ValueError:
            raise QueryValidationError(f"Unknown weighting strategy '{options.weighting_strategy}'")

        # 2. Enabled analyzers + credentials
        model_keys = self.enabled_models(options)
        missing = self.router.missing_credentials(model_keys)
        if missing:
            raise ConfigurationError(f"Missing API credentials: {', '.join(missing)}")

        try:
            return await self._run(query, market_context, options, requested.name.value, model_keys, start)
        except Exception as e:
            logger.exception(f"[Ensemble] Unexpected failure: {e}")
            return EnsembleResponse(
                final_response=APOLOGY,
                model_contributions=[],
                consensus_score=0.0,
                total_processing_time=_elapsed_ms(start),
                methodology=ERROR_METHODOLOGY,
                strategy_used=requested.name.value,
            )

    async def _run(
        self,
        query: str,
        market_context: Optional[Dict[str, Any]],
        options: EnsembleOptions,
        strategy_name: str,
        model_keys: List[str],
        start: float,
    ) -> EnsembleResponse:
        logger.info(f"[Ensemble] Dispatching {len(model_keys)} analyzers: {model_keys}")

        # 3. Fan out, all settle
        results = await asyncio.gather(
            *(self.analyzers[k].analyze(query, market_context, options.timeout_ms) for k in model_keys),
            return_exceptions=True,
        )

        # 4. Partition
        responses: List[ModelResponse] = []
        for key, result in zip(model_keys, results):
            if isinstance(result, ModelResponse):
                responses.append(result)
            else:
                logger.error(f"[Ensemble] {key} failed: {result!r}")

        if not responses:
            logger.error("[Ensemble] No analyzer produced a response")
            return EnsembleResponse(
                final_response=APOLOGY,
                model_contributions=[],
                consensus_score=0.0,
                total_processing_time=_elapsed_ms(start),
                methodology=NO_RESPONSE_METHODOLOGY,
                strategy_used=strategy_name,
            )

        # 5. Consensus
        consensus = self.consensus.consensus_score(responses)

        # 6. Strategy thresholds + weights
        strategy = resolve_strategy(strategy_name, len(responses))
        if strategy.name.value != strategy_name:
            logger.warning(
                f"[Ensemble] {strategy_name} needs more models than the {len(responses)} that answered; "
                f"falling back to {strategy.name.value}"
            )
        if consensus < strategy.consensus_threshold:
            logger.warning(
                f"[Ensemble] Consensus {consensus:.2f} below {strategy.name.value} threshold "
                f"{strategy.consensus_threshold}"
            )
        weights = strategy.weights(responses)

        # 7. Synthesis
        final_text = await self.consensus.synthesize(
            responses,
            weights,
            query,
            backend=self.router.get_backend("gemini"),
            endpoint=self.router.get_endpoint("gemini"),
            timeout_ms=self.router.get_timeout("gemini", options.timeout_ms),
        )

        # 8. Performance history
        for r in responses:
            self.config_manager.update_performance_metrics(
                r.model_key,
                PerformanceSample(response_time=r.processing_time, confidence=r.confidence),
            )

        # 9. Done
        total = _elapsed_ms(start)
        if total > strategy.max_processing_time:
            logger.warning(
                f"[Ensemble] Took {total:.0f}ms, over {strategy.name.value} budget of "
                f"{strategy.max_processing_time}ms"
            )
        logger.info(f"[Ensemble] {len(responses)}/{len(model_keys)} models answered, consensus {consensus:.2f}")

        return EnsembleResponse(
            final_response=final_text,
            model_contributions=responses,
            consensus_score=consensus,
            total_processing_time=total,
            methodology=self.consensus.explain_methodology(responses, strategy.name.value),
            strategy_used=strategy.name.value,
            weights=weights,
        )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


_default_orchestrator: Optional[EnsembleOrchestrator] = None


def get_orchestrator() -> EnsembleOrchestrator:
    global _default_orchestrator
    if _default_orchestrator is None:
        _default_orchestrator = EnsembleOrchestrator()
    return _default_orchestrator


async def generate_ensemble_response(
    query: str,
    market_context: Optional[Dict[str, Any]] = None,
    options: Union[EnsembleOptions, Dict[str, Any], None] = None,
) -> EnsembleResponse:
    return await get_orchestrator().generate_ensemble_response(query, market_context, options)
