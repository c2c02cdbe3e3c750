"""
End-to-end tests for services/ai_model_service/orchestrator.py with fake backends.
Covers partial and total failure, synthesis fallback, validation, strategy
fallback and performance recording.
"""
import pytest
from services.ai_model_service.analyzers import BaseAnalyzer
from services.ai_model_service.backends import InferenceBackend
from services.ai_model_service.consensus import APOLOGY, ConsensusEngine
from services.ai_model_service.ensemble_config import EnsembleConfigManager
from services.ai_model_service.errors import (
    BackendError,
    BackendTimeoutError,
    ConfigurationError,
    QueryValidationError,
)
from services.ai_model_service.model_router import ModelRouter
from services.ai_model_service.orchestrator import (
    ERROR_METHODOLOGY,
    NO_RESPONSE_METHODOLOGY,
    OPTION_MODELS,
    EnsembleOrchestrator,
)
from services.ai_model_service.schemas import EnsembleOptions


class FakeBackend(InferenceBackend):
    def __init__(self, name, handler, api_key="test-key"):
        super().__init__(api_key=api_key)
        self.name = name
        self.handler = handler
        self.calls = []

    async def _request(self, backend_id, input_text, timeout_s):
        self.calls.append((backend_id, input_text))
        result = self.handler(backend_id, input_text)
        if isinstance(result, Exception):
            raise result
        return result


CONTEXT = {
    "topCoin": {"name": "Bitcoin", "price": 65000, "priceChangePercent24h": 3.1,
                "volume24h": 3e10, "marketCap": 1.3e12},
    "stats": {"totalMarketCap": 2.4e12, "previousMarketCap": 2.3e12},
    "recentNews": [{"title": "ETF inflows hit record"}],
}

SCORES = {
    "ProsusAI/finbert": ("positive", 0.95),
    "ElKulako/cryptobert": ("Bullish", 0.8),
    "cardiffnlp/twitter-roberta-base-sentiment-latest": ("LABEL_1", 0.7),
}


def healthy_hf(backend_id, text):
    if backend_id in SCORES:
        label, score = SCORES[backend_id]
        return [[{"label": label, "score": score}]]
    return [{"generated_text": "Price holding above support."}]


def healthy_gemini(backend_id, text):
    if "AI coordinator" in text:
        return "Unified answer"
    return "Gemini market view"


def build(hf_handler=healthy_hf, gemini_handler=healthy_gemini, hf_key="hf-key", gemini_key="gm-key",
          consensus=None, analyzers=None):
    manager = EnsembleConfigManager()
    hf = FakeBackend("huggingface", hf_handler, hf_key)
    gem = FakeBackend("gemini", gemini_handler, gemini_key)
    router = ModelRouter(manager, huggingface=hf, gemini=gem)
    if analyzers is not None:
        analyzers = {key: cls(router) for key, cls in analyzers.items()}
    return EnsembleOrchestrator(manager, router, analyzers=analyzers, consensus=consensus), manager, hf, gem


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_all_five_models(self):
        orch, _, _, _ = build()
        result = await orch.generate_ensemble_response("Should I buy BTC now?", CONTEXT, EnsembleOptions())
        assert len(result.model_contributions) == 5
        assert {r.model_key for r in result.model_contributions} == {
            "gemini", "finbert", "cryptobert", "newsRoberta", "technicalAnalyzer",
        }
        assert len(result.weights) == 5
        assert sum(result.weights) == pytest.approx(1.0)
        assert 0.1 <= result.consensus_score <= 0.95
        assert result.final_response == "Unified answer"
        assert result.strategy_used == "confidence"
        assert result.methodology.startswith("Used 5 AI models")
        assert result.total_processing_time >= 0

    @pytest.mark.asyncio
    async def test_options_as_dict(self):
        orch, _, _, _ = build()
        result = await orch.generate_ensemble_response(
            "BTC?", CONTEXT, {"use_crypto_bert": False, "weighting_strategy": "equal"}
        )
        assert len(result.model_contributions) == 4
        assert result.weights == pytest.approx([0.25] * 4)

    @pytest.mark.asyncio
    async def test_default_options(self):
        orch, _, _, _ = build()
        result = await orch.generate_ensemble_response("BTC?")
        # technical analyzer still answers, with its no-data reading
        assert len(result.model_contributions) == 5

    @pytest.mark.asyncio
    async def test_disabled_model_skipped(self):
        orch, manager, hf, _ = build()
        manager.models["newsRoberta"].enabled = False
        result = await orch.generate_ensemble_response("BTC?", CONTEXT)
        assert "newsRoberta" not in {r.model_key for r in result.model_contributions}
        assert all(c[0] != "cardiffnlp/twitter-roberta-base-sentiment-latest" for c in hf.calls)


class TestDegradation:
    @pytest.mark.asyncio
    async def test_single_failure_excluded(self):
        def hf(backend_id, text):
            if backend_id == "ProsusAI/finbert":
                return BackendError(500, "down", backend_id)
            return healthy_hf(backend_id, text)

        orch, _, _, _ = build(hf_handler=hf)
        result = await orch.generate_ensemble_response("BTC?", CONTEXT)
        keys = [r.model_key for r in result.model_contributions]
        assert "finbert" not in keys
        assert len(keys) == 4
        assert len(result.weights) == 4

    @pytest.mark.asyncio
    async def test_local_fallbacks_count_as_success(self):
        def hf(backend_id, text):
            return BackendError(500, "down", backend_id)

        orch, _, _, _ = build(hf_handler=hf)
        result = await orch.generate_ensemble_response("to the moon", CONTEXT)
        sources = {r.source for r in result.model_contributions}
        assert sources == {"Gemini-2.0-Flash", "Crypto-Keywords", "Rule-Based-Technical"}

    @pytest.mark.asyncio
    async def test_unexpected_backend_error_still_uses_local_fallbacks(self):
        def broken(backend_id, text):
            return RuntimeError("unreachable")

        orch, _, _, _ = build(hf_handler=broken, gemini_handler=broken)
        result = await orch.generate_ensemble_response("to the moon", CONTEXT)
        sources = {r.source for r in result.model_contributions}
        assert sources == {"Crypto-Keywords", "Rule-Based-Technical"}

    @pytest.mark.asyncio
    async def test_all_analyzers_fail(self):
        class ExplodingAnalyzer(BaseAnalyzer):
            async def _analyze(self, query, ctx, raw_context, timeout_ms):
                raise RuntimeError("unreachable")

        orch, manager, _, _ = build(analyzers={key: ExplodingAnalyzer for key in OPTION_MODELS.values()})
        result = await orch.generate_ensemble_response("BTC?", CONTEXT)
        assert result.model_contributions == []
        assert result.consensus_score == 0
        assert result.final_response == APOLOGY
        assert result.methodology == NO_RESPONSE_METHODOLOGY
        assert manager.get_model_performance("gemini").has_data is False

    @pytest.mark.asyncio
    async def test_synthesis_failure_uses_local_synthesis(self):
        def gemini(backend_id, text):
            if "AI coordinator" in text:
                return BackendError(500, "synthesis down", backend_id)
            return "Gemini market view"

        orch, _, _, _ = build(gemini_handler=gemini)
        result = await orch.generate_ensemble_response("BTC?", CONTEXT)
        # FinBERT has the highest confidence (0.95)
        assert "Primary Analysis (FinBERT)" in result.final_response
        assert len(result.model_contributions) == 5

    @pytest.mark.asyncio
    async def test_unexpected_error_degrades(self):
        class BrokenConsensus(ConsensusEngine):
            def consensus_score(self, responses):
                raise RuntimeError("bug")

        orch, _, _, _ = build(consensus=BrokenConsensus())
        result = await orch.generate_ensemble_response("BTC?", CONTEXT)
        assert result.final_response == APOLOGY
        assert result.methodology == ERROR_METHODOLOGY
        assert result.model_contributions == []


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   ", None])
    async def test_empty_query(self, query):
        orch, _, _, _ = build()
        with pytest.raises(QueryValidationError):
            await orch.generate_ensemble_response(query, CONTEXT)

    @pytest.mark.asyncio
    async def test_unknown_strategy(self):
        orch, _, _, _ = build()
        with pytest.raises(QueryValidationError):
            await orch.generate_ensemble_response("BTC?", CONTEXT, {"weighting_strategy": "bogus"})

    @pytest.mark.asyncio
    async def test_camel_case_options(self):
        orch, _, _, _ = build()
        result = await orch.generate_ensemble_response(
            "BTC?", CONTEXT, {"useGemini": False, "useCryptoBert": False, "weightingStrategy": "equal"}
        )
        keys = {r.model_key for r in result.model_contributions}
        assert keys == {"finbert", "newsRoberta", "technicalAnalyzer"}
        assert result.strategy_used == "equal"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("options", [
        {"use_gemini": "maybe"},
        {"timeoutMs": -5},
        {"useGeminii": False},
    ])
    async def test_invalid_options_rejected(self, options):
        orch, _, hf, _ = build()
        with pytest.raises(QueryValidationError, match="Invalid ensemble options"):
            await orch.generate_ensemble_response("BTC?", CONTEXT, options)
        assert hf.calls == []

    @pytest.mark.asyncio
    async def test_missing_huggingface_key(self):
        orch, _, hf, _ = build(hf_key="")
        with pytest.raises(ConfigurationError, match="HUGGINGFACE_API_KEY"):
            await orch.generate_ensemble_response("BTC?", CONTEXT)
        assert hf.calls == []

    @pytest.mark.asyncio
    async def test_only_needed_credentials_checked(self):
        orch, _, _, _ = build(hf_key="")
        options = EnsembleOptions(
            use_financial_bert=False, use_crypto_bert=False,
            use_news_analysis=False, use_technical_analysis=False,
        )
        result = await orch.generate_ensemble_response("BTC?", CONTEXT, options)
        assert [r.model_key for r in result.model_contributions] == ["gemini"]

    @pytest.mark.asyncio
    async def test_missing_gemini_key_with_gemini_enabled(self):
        orch, _, _, _ = build(gemini_key="")
        with pytest.raises(ConfigurationError, match="GEMINI_API_KEY"):
            await orch.generate_ensemble_response("BTC?", CONTEXT)

    @pytest.mark.asyncio
    async def test_no_gemini_key_synthesizes_locally(self):
        orch, _, _, gem = build(gemini_key="")
        result = await orch.generate_ensemble_response("BTC?", CONTEXT, EnsembleOptions(use_gemini=False))
        assert gem.calls == []
        assert "Primary Analysis (FinBERT)" in result.final_response


class TestStrategyAndHistory:
    @pytest.mark.asyncio
    async def test_strategy_falls_back_when_too_few_models(self):
        orch, _, _, _ = build()
        options = EnsembleOptions(
            use_crypto_bert=False, use_news_analysis=False,
            use_technical_analysis=False, weighting_strategy="highAccuracy",
        )
        result = await orch.generate_ensemble_response("BTC?", CONTEXT, options)
        assert len(result.model_contributions) == 2
        assert result.strategy_used == "confidence"

    @pytest.mark.asyncio
    async def test_single_response_consensus(self):
        orch, _, _, _ = build()
        options = EnsembleOptions(
            use_financial_bert=False, use_crypto_bert=False,
            use_news_analysis=False, use_technical_analysis=False,
        )
        result = await orch.generate_ensemble_response("BTC?", CONTEXT, options)
        assert result.consensus_score == 0.5
        assert result.weights == [1.0]

    @pytest.mark.asyncio
    async def test_performance_recorded_for_contributors(self):
        def hf(backend_id, text):
            if backend_id == "ProsusAI/finbert":
                return BackendError(500, "down", backend_id)
            return healthy_hf(backend_id, text)

        orch, manager, _, _ = build(hf_handler=hf)
        await orch.generate_ensemble_response("BTC?", CONTEXT)
        await orch.generate_ensemble_response("ETH?", CONTEXT)
        assert manager.get_model_performance("gemini").total_requests == 2
        assert manager.get_model_performance("cryptobert").average_confidence == pytest.approx(0.8)
        assert manager.get_model_performance("finbert").has_data is False


class TestSentimentScenario:
    @pytest.mark.asyncio
    async def test_crypto_timeout_falls_back_and_still_contributes(self):
        def hf(backend_id, text):
            if backend_id == "ElKulako/cryptobert":
                return BackendTimeoutError(backend_id, 12000)
            return healthy_hf(backend_id, text)

        orch, _, hf_backend, _ = build(hf_handler=hf)
        result = await orch.generate_ensemble_response("What's the Bitcoin sentiment?", CONTEXT, EnsembleOptions())
        assert len(result.model_contributions) == 5
        crypto = next(r for r in result.model_contributions if r.model_key == "cryptobert")
        assert crypto.source == "Crypto-Keywords"
        # timeouts are not retried
        assert sum(1 for c in hf_backend.calls if c[0] == "ElKulako/cryptobert") == 1
        assert sum(result.weights) == pytest.approx(1.0, abs=1e-6)
        assert result.consensus_score == pytest.approx(
            orch.consensus.consensus_score(result.model_contributions)
        )
