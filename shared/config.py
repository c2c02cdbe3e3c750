from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

class GlobalConfig(BaseSettings):
    # Platform Info
    PLATFORM_NAME: str = "Tradeable"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Inference Credentials
    HUGGINGFACE_API_KEY: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None

    # Inference Endpoints
    HF_INFERENCE_URL: str = "https://api-inference.huggingface.co/models"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1/models"
    GEMINI_MODEL: str = "gemini-2.0-flash"
    HTTP_USER_AGENT: str = "Tradeable-App/1.0"

    # Gemini generation params
    GEMINI_TEMPERATURE: float = 0.7
    GEMINI_TOP_P: float = 0.8
    GEMINI_TOP_K: int = 40
    GEMINI_MAX_OUTPUT_TOKENS: int = 2048

    # Backend call policy
    DEFAULT_BACKEND_TIMEOUT_MS: int = 30000
    BACKEND_RETRY_BACKOFF_SECONDS: float = 0.5

    # Ensemble
    ENSEMBLE_DEFAULT_STRATEGY: str = "confidence"
    PERFORMANCE_HISTORY_LIMIT: int = 100

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

# Singleton instance
settings = GlobalConfig()
