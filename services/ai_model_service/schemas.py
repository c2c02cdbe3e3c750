from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime


# ── Analyzer payloads (tagged by ``kind``) ──

class SentimentReading(BaseModel):
    model_config = ConfigDict(frozen=True)
    text: str
    label: str
    score: float = Field(..., ge=0.0, le=1.0)

class SentimentPayload(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["sentiment"] = "sentiment"
    type: str
    label: str = "neutral"
    score: float = Field(0.5, ge=0.0, le=1.0)
    readings: List[SentimentReading] = []
    positive_matches: Optional[int] = None
    negative_matches: Optional[int] = None
    strengths: List[str] = []

class TextPayload(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["text"] = "text"
    type: str
    analysis: str
    strengths: List[str] = []

class TechnicalPayload(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["technical"] = "technical"
    type: str
    analysis: str
    classification: Optional[str] = None
    volume_profile: Optional[str] = None
    metrics: Dict[str, Optional[float]] = {}
    strengths: List[str] = []

AnalyzerPayload = Annotated[
    Union[SentimentPayload, TextPayload, TechnicalPayload],
    Field(discriminator="kind"),
]


# ── Ensemble request / response ──

class ModelResponse(BaseModel):
    """One analyzer's output for one ensemble request."""
    model_config = ConfigDict(frozen=True)
    source: str
    model_key: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    data: AnalyzerPayload
    processing_time: float = Field(0.0, ge=0.0)  # ms

class EnsembleResponse(BaseModel):
    final_response: str
    model_contributions: List[ModelResponse] = []
    consensus_score: float = Field(0.0, ge=0.0, le=1.0)
    total_processing_time: float = 0.0  # ms
    methodology: str = ""
    strategy_used: Optional[str] = None
    weights: List[float] = []

class EnsembleOptions(BaseModel):
    """Per-request switches; accepts snake_case names or the camelCase keys callers send."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    use_gemini: bool = Field(True, alias="useGemini")
    use_financial_bert: bool = Field(True, alias="useFinancialBert")
    use_crypto_bert: bool = Field(True, alias="useCryptoBert")
    use_news_analysis: bool = Field(True, alias="useNewsAnalysis")
    use_technical_analysis: bool = Field(True, alias="useTechnicalAnalysis")
    weighting_strategy: str = Field("confidence", alias="weightingStrategy")
    timeout_ms: Optional[int] = Field(None, gt=0, alias="timeoutMs")

    @classmethod
    def from_configuration(cls, optimal: "OptimalConfiguration") -> "EnsembleOptions":
        enabled = set(optimal.enabled_models)
        return cls(
            use_gemini="gemini" in enabled,
            use_financial_bert="finbert" in enabled,
            use_crypto_bert="cryptobert" in enabled,
            use_news_analysis="newsRoberta" in enabled,
            use_technical_analysis="technicalAnalyzer" in enabled,
            weighting_strategy=optimal.strategy,
            timeout_ms=optimal.timeout,
        )


# ── Configuration manager I/O ──

class QueryAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    is_technical_query: bool = Field(False, alias="isTechnicalQuery")
    is_sentiment_query: bool = Field(False, alias="isSentimentQuery")
    is_educational_query: bool = Field(False, alias="isEducationalQuery")
    complexity: Literal["low", "medium", "high"] = "medium"
    urgency: Literal["normal", "high"] = "normal"

class OptimalConfiguration(BaseModel):
    enabled_models: List[str]
    strategy: str
    timeout: int
    expected_cost: float

class ModelPerformance(BaseModel):
    model_name: str
    has_data: bool
    message: str = ""
    average_response_time: Optional[int] = None
    average_confidence: Optional[float] = None
    success_rate: Optional[float] = None
    total_requests: int = 0
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
