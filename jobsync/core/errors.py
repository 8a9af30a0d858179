"""Error taxonomy for the ingestion pipeline.

Network operations never raise these to their callers; they come back inside a
``Result`` so retry/terminal classification is decided in one place. Per-record
errors (transform, persistence) are raised and caught at the batch boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

import httpx

T = TypeVar("T")


class PipelineError(Exception):
    """Base pipeline error."""


class TransientNetworkError(PipelineError):
    """Timeout, connection reset or 5xx; worth retrying."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ClientRequestError(PipelineError):
    """4xx response; retrying will not help."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExhaustedRetriesError(PipelineError):
    """Raised when every attempt failed with a retryable error."""

    def __init__(self, message: str, *, attempts: int, last_error: PipelineError | None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
        self.__cause__ = last_error


class RecordTransformError(PipelineError):
    """A single upstream listing could not be mapped to a canonical record."""


class PersistenceError(PipelineError):
    """A single store operation failed."""


class UnknownSourceError(PipelineError):
    """Raised when a source tag is not registered with the orchestrator."""


@dataclass(slots=True)
class Result(Generic[T]):
    value: T | None = None
    error: PipelineError | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, *, attempts: int = 1) -> Result[T]:
        return cls(value=value, error=None, attempts=attempts)

    @classmethod
    def failure(cls, error: PipelineError, *, attempts: int = 0) -> Result[T]:
        return cls(value=None, error=error, attempts=attempts)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def classify_error(exc: BaseException) -> PipelineError:
    if isinstance(exc, (ClientRequestError, TransientNetworkError)):
        return exc

    status_code = _status_code_of(exc)
    if status_code is not None and 400 <= status_code < 500:
        return ClientRequestError(f"client error {status_code}: {exc}", status_code=status_code)
    if status_code is not None:
        return TransientNetworkError(f"server error {status_code}: {exc}", status_code=status_code)
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return TransientNetworkError(f"timeout: {exc!r}")
    if isinstance(exc, httpx.TransportError):
        return TransientNetworkError(f"transport error: {exc!r}")
    return TransientNetworkError(f"{type(exc).__name__}: {exc}")


def _status_code_of(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return int(exc.response.status_code)
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    return None
