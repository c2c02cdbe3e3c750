"""Tests for shared/config.py — GlobalConfig defaults and overrides."""
from shared.config import GlobalConfig
from services.ai_model_service.weighting import WeightingStrategy


class TestGlobalConfigDefaults:
    """Ensure all default values are sane."""

    def test_platform_name(self):
        cfg = GlobalConfig()
        assert cfg.PLATFORM_NAME == "Tradeable"

    def test_environment_default(self):
        cfg = GlobalConfig()
        assert cfg.ENVIRONMENT == "development"

    def test_endpoints(self):
        cfg = GlobalConfig()
        assert cfg.HF_INFERENCE_URL.startswith("https://")
        assert cfg.GEMINI_BASE_URL.startswith("https://")
        assert cfg.GEMINI_MODEL

    def test_generation_params_in_range(self):
        cfg = GlobalConfig()
        assert 0 <= cfg.GEMINI_TEMPERATURE <= 2
        assert 0 < cfg.GEMINI_TOP_P <= 1
        assert cfg.GEMINI_TOP_K > 0
        assert cfg.GEMINI_MAX_OUTPUT_TOKENS > 0

    def test_backend_call_policy(self):
        cfg = GlobalConfig()
        assert cfg.DEFAULT_BACKEND_TIMEOUT_MS == 30000
        assert cfg.BACKEND_RETRY_BACKOFF_SECONDS >= 0

    def test_default_strategy_is_known(self):
        cfg = GlobalConfig()
        assert WeightingStrategy(cfg.ENSEMBLE_DEFAULT_STRATEGY) == WeightingStrategy.CONFIDENCE

    def test_history_limit(self):
        cfg = GlobalConfig()
        assert cfg.PERFORMANCE_HISTORY_LIMIT == 100

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("PLATFORM_NAME", "TestTrade")
        monkeypatch.setenv("GEMINI_MODEL", "gemini-test")
        cfg = GlobalConfig()
        assert cfg.PLATFORM_NAME == "TestTrade"
        assert cfg.GEMINI_MODEL == "gemini-test"

    def test_optional_credentials(self):
        cfg = GlobalConfig()
        # These should be None when not set via env
        assert cfg.HUGGINGFACE_API_KEY is None or isinstance(cfg.HUGGINGFACE_API_KEY, str)
        assert cfg.GEMINI_API_KEY is None or isinstance(cfg.GEMINI_API_KEY, str)
