"""Error taxonomy and the provider result type.

Recoverable errors move the orchestrator to the next link of its fallback
chain; fatal ones are raised to the caller unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class LocationError(Exception):
    recoverable = False
    status_code = 500


class ConfigurationError(LocationError):
    """Missing or invalid configuration, raised at construction time."""


class UpstreamError(LocationError):
    recoverable = True
    status_code = 502

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class UpstreamTimeoutError(UpstreamError):
    status_code = 504


class BudgetExceededError(UpstreamError):
    status_code = 429


class MalformedElementError(LocationError):
    recoverable = True
    status_code = 422


class PersistenceError(LocationError):
    recoverable = True


class ValidationError(LocationError, ValueError):
    status_code = 400

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.details = list(details or [])


class ServiceUnavailableError(LocationError):
    status_code = 503


STATUS_OK = "ok"
STATUS_RECOVERABLE = "recoverable_error"
STATUS_FATAL = "fatal_error"


@dataclass(frozen=True)
class ProviderResult:
    status: str
    response: Any = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, response: Any) -> "ProviderResult":
        return cls(status=STATUS_OK, response=response)

    @classmethod
    def failure(cls, error: BaseException) -> "ProviderResult":
        recoverable = bool(getattr(error, "recoverable", False))
        return cls(status=STATUS_RECOVERABLE if recoverable else STATUS_FATAL, error=error)

    @property
    def is_ok(self) -> bool:
        return self.status == STATUS_OK

    @property
    def is_recoverable(self) -> bool:
        return self.status == STATUS_RECOVERABLE
