"""
Tests for services/ai_model_service/backends.py — HTTP adapters against httpx.MockTransport.
Covers request shape, error translation (non-2xx, malformed JSON, transport) and deadlines.
"""
import asyncio
import json

import httpx
import pytest
from services.ai_model_service.backends import GeminiBackend, HuggingFaceBackend, InferenceBackend
from services.ai_model_service.errors import BackendError, BackendTimeoutError


def _transport(handler, seen=None):
    def wrapped(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return handler(request)
    return httpx.MockTransport(wrapped)


class TestHuggingFaceBackend:
    @pytest.mark.asyncio
    async def test_posts_inputs_and_returns_json(self):
        seen = []
        body = [[{"label": "positive", "score": 0.93}, {"label": "negative", "score": 0.07}]]
        backend = HuggingFaceBackend(
            api_key="hf-test",
            base_url="https://hf.test/models",
            transport=_transport(lambda r: httpx.Response(200, json=body), seen),
        )
        result = await backend.call("ProsusAI/finbert", "Bitcoin is up 4%", 5000)

        assert result == body
        request = seen[0]
        assert request.url.path == "/models/ProsusAI/finbert"
        assert request.headers["Authorization"] == "Bearer hf-test"
        payload = json.loads(request.content)
        assert payload["inputs"] == "Bitcoin is up 4%"
        assert payload["options"] == {"wait_for_model": True, "use_cache": False}

    @pytest.mark.asyncio
    async def test_non_2xx_raises_backend_error(self):
        backend = HuggingFaceBackend(
            api_key="hf-test",
            transport=_transport(lambda r: httpx.Response(503, text="Model is loading")),
        )
        with pytest.raises(BackendError) as exc:
            await backend.call("ProsusAI/finbert", "hello", 5000)
        assert exc.value.status == 503
        assert exc.value.body == "Model is loading"
        assert exc.value.backend_id == "ProsusAI/finbert"
        assert exc.value.is_transient is True

    @pytest.mark.asyncio
    async def test_client_error_not_transient(self):
        backend = HuggingFaceBackend(
            api_key="hf-test",
            transport=_transport(lambda r: httpx.Response(401, text="Unauthorized")),
        )
        with pytest.raises(BackendError) as exc:
            await backend.call("ProsusAI/finbert", "hello", 5000)
        assert exc.value.is_transient is False

    @pytest.mark.asyncio
    async def test_malformed_json_raises_backend_error(self):
        backend = HuggingFaceBackend(
            api_key="hf-test",
            transport=_transport(lambda r: httpx.Response(200, text="<html>oops</html>")),
        )
        with pytest.raises(BackendError):
            await backend.call("ProsusAI/finbert", "hello", 5000)

    @pytest.mark.asyncio
    async def test_transport_error_translated(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend = HuggingFaceBackend(api_key="hf-test", transport=_transport(boom))
        with pytest.raises(BackendError) as exc:
            await backend.call("ProsusAI/finbert", "hello", 5000)
        assert exc.value.status is None
        assert not isinstance(exc.value, BackendTimeoutError)

    @pytest.mark.asyncio
    async def test_httpx_timeout_translated(self):
        def slow(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        backend = HuggingFaceBackend(api_key="hf-test", transport=_transport(slow))
        with pytest.raises(BackendTimeoutError):
            await backend.call("ProsusAI/finbert", "hello", 5000)

    def test_is_configured(self):
        assert HuggingFaceBackend(api_key="k").is_configured() is True
        assert HuggingFaceBackend(api_key="").is_configured() is False


class TestGeminiBackend:
    @pytest.mark.asyncio
    async def test_returns_first_candidate_text(self):
        seen = []
        body = {"candidates": [{"content": {"parts": [{"text": "BTC looks strong."}]}}]}
        backend = GeminiBackend(
            api_key="gm-test",
            base_url="https://gemini.test/v1/models",
            transport=_transport(lambda r: httpx.Response(200, json=body), seen),
        )
        text = await backend.call("gemini-2.0-flash", "Analyse BTC", 5000)

        assert text == "BTC looks strong."
        request = seen[0]
        assert request.url.path == "/v1/models/gemini-2.0-flash:generateContent"
        assert request.url.params["key"] == "gm-test"
        payload = json.loads(request.content)
        assert payload["contents"][0]["parts"][0]["text"] == "Analyse BTC"
        assert "temperature" in payload["generationConfig"]

    @pytest.mark.asyncio
    async def test_invalid_structure(self):
        backend = GeminiBackend(
            api_key="gm-test",
            transport=_transport(lambda r: httpx.Response(200, json={"candidates": []})),
        )
        with pytest.raises(BackendError, match="Invalid response structure"):
            await backend.call("gemini-2.0-flash", "Analyse BTC", 5000)

    @pytest.mark.asyncio
    async def test_empty_prompt_rejected_without_request(self):
        seen = []
        backend = GeminiBackend(
            api_key="gm-test",
            transport=_transport(lambda r: httpx.Response(200, json={}), seen),
        )
        with pytest.raises(BackendError):
            await backend.call("gemini-2.0-flash", "   ", 5000)
        assert seen == []

    @pytest.mark.asyncio
    async def test_error_status(self):
        backend = GeminiBackend(
            api_key="gm-test",
            transport=_transport(lambda r: httpx.Response(429, text="quota")),
        )
        with pytest.raises(BackendError) as exc:
            await backend.call("gemini-2.0-flash", "hi", 5000)
        assert exc.value.status == 429
        assert exc.value.is_transient is True


class SlowBackend(InferenceBackend):
    name = "slow"

    def __init__(self):
        super().__init__(api_key="k")
        self.cancelled = False

    async def _request(self, backend_id, input_text, timeout_s):
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return "too late"


class TestDeadline:
    @pytest.mark.asyncio
    async def test_timeout_raises_and_cancels(self):
        backend = SlowBackend()
        with pytest.raises(BackendTimeoutError) as exc:
            await backend.call("slow-model", "hello", 50)
        assert exc.value.backend_id == "slow-model"
        assert exc.value.timeout_ms == 50
        assert exc.value.is_transient is False
        assert backend.cancelled is True
