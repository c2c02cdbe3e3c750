from typing import Dict, Iterable, List, Optional

from shared.config import settings
from services.ai_model_service.backends import GeminiBackend, HuggingFaceBackend, InferenceBackend
from services.ai_model_service.ensemble_config import EnsembleConfigManager, ensemble_config_manager

# Model keys served by the LLM backend; everything else goes to HuggingFace
LLM_MODELS = {"gemini"}

CREDENTIAL_NAMES = {
    "gemini": "GEMINI_API_KEY",
    "huggingface": "HUGGINGFACE_API_KEY",
}


class ModelRouter:
    def __init__(
        self,
        config_manager: Optional[EnsembleConfigManager] = None,
        huggingface: Optional[InferenceBackend] = None,
        gemini: Optional[InferenceBackend] = None,
    ):
        self.config_manager = config_manager or ensemble_config_manager
        self.huggingface = huggingface or HuggingFaceBackend()
        self.gemini = gemini or GeminiBackend()

    def get_backend(self, model_key: str) -> InferenceBackend:
        """Route a model key to the backend that serves it."""
        if model_key in LLM_MODELS:
            return self.gemini
        return self.huggingface

    def get_endpoint(self, model_key: str) -> str:
        model = self.config_manager.get_model(model_key)
        if model and model.endpoint:
            return model.endpoint
        if model_key in LLM_MODELS:
            return settings.GEMINI_MODEL
        raise ValueError(f"No endpoint configured for model '{model_key}'")

    def get_timeout(self, model_key: str, cap_ms: Optional[int] = None) -> int:
        model = self.config_manager.get_model(model_key)
        timeout = model.timeout if model else settings.DEFAULT_BACKEND_TIMEOUT_MS
        if cap_ms:
            timeout = min(timeout, cap_ms)
        return timeout

    def get_retries(self, model_key: str) -> int:
        model = self.config_manager.get_model(model_key)
        return model.retries if model else 0

    def missing_credentials(self, model_keys: Iterable[str]) -> List[str]:
        """Names of the credentials the given models need but do not have."""
        missing: Dict[str, None] = {}
        for key in model_keys:
            backend = self.get_backend(key)
            if not backend.is_configured():
                missing[CREDENTIAL_NAMES.get(backend.name, backend.name)] = None
        return list(missing)
