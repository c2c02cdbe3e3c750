"""
Inference Backends — Unified Remote Model Interface
====================================================
One call shape for every remote model the ensemble uses:

  - HuggingFace Inference API (text classification / generation)
  - Google Gemini (generateContent)

Each backend implements ``InferenceBackend.call(backend_id, input_text,
timeout_ms)``. Non-2xx responses raise ``BackendError``; a call that does not
answer within ``timeout_ms`` raises ``BackendTimeoutError`` after the
in-flight request has been cancelled. Retries belong to the analyzers.
"""

import asyncio
import httpx
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from shared.config import settings
from services.ai_model_service.errors import BackendError, BackendTimeoutError

logger = logging.getLogger("ai_backends")


# ──────────────────────────────────────────────────────────────────
# Base Backend Interface
# ──────────────────────────────────────────────────────────────────
class InferenceBackend(ABC):
    """Abstract base class for remote inference endpoints."""

    name = "backend"

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key or ""
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def call(self, backend_id: str, input_text: str, timeout_ms: float) -> Any:
        """Run one inference call bounded by ``timeout_ms``."""
        timeout_s = max(timeout_ms, 1) / 1000
        try:
            # wait_for cancels the request task, which closes the connection
            return await asyncio.wait_for(
                self._request(backend_id, input_text, timeout_s),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(f"[{self.name}] {backend_id} timed out after {timeout_ms:.0f}ms")
            raise BackendTimeoutError(backend_id, timeout_ms)
        except httpx.HTTPError as e:
            logger.error(f"[{self.name}] transport error calling {backend_id}: {e}")
            raise BackendError(None, str(e), backend_id) from e

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout_s, transport=self._transport)

    @staticmethod
    def _decode(resp: httpx.Response, backend_id: str) -> Any:
        if resp.status_code < 200 or resp.status_code >= 300:
            raise BackendError(resp.status_code, resp.text, backend_id)
        try:
            return resp.json()
        except ValueError:
            raise BackendError(resp.status_code, resp.text, backend_id)

    @abstractmethod
    async def _request(self, backend_id: str, input_text: str, timeout_s: float) -> Any:
        pass


# ──────────────────────────────────────────────────────────────────
# HuggingFace Inference API
# ──────────────────────────────────────────────────────────────────
class HuggingFaceBackend(InferenceBackend):
    """
    HuggingFace hosted inference.
    ``backend_id`` is the model repo id, e.g. ``ProsusAI/finbert``.

    Classification models answer with ``{label, score}``, a list of them,
    or a list of lists; generation models with ``[{"generated_text": ...}]``.
    The raw JSON is returned untouched.
    """

    name = "huggingface"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key if api_key is not None else settings.HUGGINGFACE_API_KEY, transport)
        self.base_url = (base_url or settings.HF_INFERENCE_URL).rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": settings.HTTP_USER_AGENT,
        }

    async def _request(self, backend_id: str, input_text: str, timeout_s: float) -> Any:
        payload = {
            "inputs": input_text,
            "options": {"wait_for_model": True, "use_cache": False},
        }
        async with self._client(timeout_s) as client:
            resp = await client.post(f"{self.base_url}/{backend_id}", headers=self._headers, json=payload)
        if resp.status_code >= 300:
            logger.error(f"[HF] {backend_id} returned {resp.status_code}: {resp.text[:200]}")
        return self._decode(resp, backend_id)


# ──────────────────────────────────────────────────────────────────
# Gemini
# ──────────────────────────────────────────────────────────────────
class GeminiBackend(InferenceBackend):
    """
    Gemini ``generateContent`` over REST.
    ``backend_id`` is the model name; an empty id means ``settings.GEMINI_MODEL``.
    Returns the first candidate's text.
    """

    name = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key if api_key is not None else settings.GEMINI_API_KEY, transport)
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.generation_config = {
            "temperature": settings.GEMINI_TEMPERATURE,
            "topP": settings.GEMINI_TOP_P,
            "topK": settings.GEMINI_TOP_K,
            "maxOutputTokens": settings.GEMINI_MAX_OUTPUT_TOKENS,
        }

    async def _request(self, backend_id: str, input_text: str, timeout_s: float) -> str:
        model = backend_id or settings.GEMINI_MODEL
        if not input_text or not input_text.strip():
            raise BackendError(None, "Prompt cannot be empty", model)
        payload = {
            "contents": [{"parts": [{"text": input_text}]}],
            "generationConfig": self.generation_config,
        }
        async with self._client(timeout_s) as client:
            resp = await client.post(
                f"{self.base_url}/{model}:generateContent",
                params={"key": self.api_key},
                json=payload,
            )
        data = self._decode(resp, model)
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise BackendError(resp.status_code, "Invalid response structure from Gemini API", model)
        if not text:
            raise BackendError(resp.status_code, "Empty completion from Gemini API", model)
        return text
