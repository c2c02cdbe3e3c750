"""
Ensemble error taxonomy.

Only ``ConfigurationError`` and ``QueryValidationError`` ever reach the
caller of the ensemble; backend errors are handled inside analyzers or the
orchestrator and turned into degraded responses.
"""

from typing import Optional


class EnsembleError(Exception):
    """Base class for all ensemble errors."""


class ConfigurationError(EnsembleError):
    """A required credential or setting is missing."""


class QueryValidationError(EnsembleError):
    """The incoming query is missing or not usable."""


class BackendError(EnsembleError):
    """Non-2xx or malformed response from an inference backend."""

    def __init__(self, status: Optional[int], body: str = "", backend_id: str = ""):
        self.status = status
        self.body = body
        self.backend_id = backend_id
        super().__init__(f"Backend {backend_id or 'unknown'} error: {status} - {body[:200]}")

    @property
    def is_transient(self) -> bool:
        return self.status in (429, 502, 503, 504)


class BackendTimeoutError(BackendError):
    """No response from the backend within the call deadline."""

    def __init__(self, backend_id: str = "", timeout_ms: float = 0):
        self.timeout_ms = timeout_ms
        super().__init__(None, f"timed out after {timeout_ms:.0f}ms", backend_id)

    @property
    def is_transient(self) -> bool:
        return False
