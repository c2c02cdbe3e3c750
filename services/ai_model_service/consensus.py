import json
import logging
from typing import List, Optional, Sequence

import numpy as np

from services.ai_model_service.backends import InferenceBackend
from services.ai_model_service.prompts import CLOSING_LINE, prompt_registry
from services.ai_model_service.schemas import ModelResponse

logger = logging.getLogger("consensus")

APOLOGY = (
    "I apologize, but I couldn't generate a comprehensive analysis due to "
    "technical difficulties. Please try again."
)


class ConsensusEngine:
    MIN_SCORE = 0.1
    MAX_SCORE = 0.95
    SINGLE_RESPONSE_SCORE = 0.5

    def consensus_score(self, responses: Sequence[ModelResponse]) -> float:
        """
        Agreement between models from the spread of their confidences:
        1 - population variance, clamped to [0.1, 0.95].
        """
        if not responses:
            return 0.0
        if len(responses) == 1:
            return self.SINGLE_RESPONSE_SCORE
        variance = float(np.var([r.confidence for r in responses]))
        return max(self.MIN_SCORE, min(self.MAX_SCORE, 1.0 - variance))

    def explain_methodology(self, responses: Sequence[ModelResponse], strategy: str) -> str:
        sources = ", ".join(r.source for r in responses)
        return (
            f"Used {len(responses)} AI models ({sources}) with {strategy} weighting strategy. "
            "Consensus score indicates model agreement level."
        )

    def build_synthesis_prompt(
        self, responses: Sequence[ModelResponse], weights: Sequence[float], query: str
    ) -> str:
        analyses = "\n".join(
            prompt_registry.get_prompt(
                "model_analysis",
                index=i + 1,
                source=r.source,
                confidence=r.confidence * 100,
                weight=w * 100,
                data=json.dumps(r.data.model_dump(), indent=2, default=str),
            )
            for i, (r, w) in enumerate(zip(responses, weights))
        )
        return prompt_registry.get_prompt("synthesis", query=query, analyses=analyses, closing=CLOSING_LINE)

    def fallback_synthesis(self, responses: Sequence[ModelResponse], query: str = "") -> str:
        """Deterministic local synthesis led by the most confident response."""
        if not responses:
            return APOLOGY

        primary = max(responses, key=lambda r: r.confidence)
        others: List[ModelResponse] = [r for r in responses if r is not primary]
        body = getattr(primary.data, "analysis", None) or primary.data.model_dump()

        lines = [
            "Based on multi-model AI analysis:",
            "",
            f"Primary Analysis ({primary.source}):",
            body if isinstance(body, str) else json.dumps(body, indent=2, default=str),
            "",
        ]
        if others:
            lines.append(f"Supporting insights from {len(others)} additional models:")
            lines.extend(f"- {r.source}: {r.data.type}" for r in others)
        lines.append("")
        lines.append(f"Confidence: {primary.confidence * 100:.1f}%")
        lines.append(f"Models consulted: {', '.join(r.source for r in responses)}")
        lines.append("")
        lines.append(CLOSING_LINE)
        return "\n".join(lines)

    async def synthesize(
        self,
        responses: Sequence[ModelResponse],
        weights: Sequence[float],
        query: str,
        backend: Optional[InferenceBackend] = None,
        endpoint: str = "",
        timeout_ms: int = 30000,
    ) -> str:
        """
        Ask the LLM backend for one unified answer. Any failure (no backend,
        missing credentials, backend error, empty text) falls back to the
        local synthesis; this never raises for backend problems.
        """
        if not responses:
            return APOLOGY
        if backend is None or not backend.is_configured():
            logger.warning("Synthesis backend unavailable, using local synthesis")
            return self.fallback_synthesis(responses, query)

        prompt = self.build_synthesis_prompt(responses, weights, query)
        try:
            text = await backend.call(endpoint, prompt, timeout_ms)
        except Exception as e:
            logger.error(f"Synthesis failed: {e}")
            return self.fallback_synthesis(responses, query)

        if not isinstance(text, str) or not text.strip():
            logger.warning("Synthesis returned no text, using local synthesis")
            return self.fallback_synthesis(responses, query)
        return text


# Singleton
consensus_engine = ConsensusEngine()
