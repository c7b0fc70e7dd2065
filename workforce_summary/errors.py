from __future__ import annotations

from math import ceil
from typing import Any


class WorkforceError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class UpstreamError(WorkforceError):
    """Failure reported by (or while talking to) an upstream data source."""

    def __init__(
        self,
        source: str,
        message: str,
        *,
        status_code: int = 502,
        code: str = "UPSTREAM_ERROR",
        upstream_status: int | None = None,
    ):
        super().__init__(status_code, code, message)
        self.source = source
        self.upstream_status = upstream_status


class RateLimitedError(UpstreamError):
    def __init__(self, source: str, message: str):
        super().__init__(
            source,
            message,
            status_code=503,
            code="UPSTREAM_RATE_LIMITED",
            upstream_status=429,
        )


class QuotaExhaustedError(UpstreamError):
    def __init__(self, source: str, message: str):
        super().__init__(
            source,
            message,
            status_code=503,
            code="UPSTREAM_QUOTA_EXHAUSTED",
            upstream_status=402,
        )


class CircuitOpenError(UpstreamError):
    def __init__(self, source: str, retry_after_seconds: float):
        self.retry_after_seconds = max(0.0, retry_after_seconds)
        minutes = max(1, ceil(self.retry_after_seconds / 60))
        super().__init__(
            source,
            f"{source} quota exhausted; calls paused for another {minutes} min",
            status_code=503,
            code="UPSTREAM_CIRCUIT_OPEN",
            upstream_status=402,
        )


class SummaryGenerationError(WorkforceError):
    def __init__(self, source: str, message: str, *, retry_after_seconds: float | None = None):
        super().__init__(503, "SUMMARY_UNAVAILABLE", message)
        self.source = source
        self.retry_after_seconds = retry_after_seconds

    @classmethod
    def from_upstream(cls, exc: UpstreamError) -> "SummaryGenerationError":
        return cls(
            exc.source,
            f"{exc.source} unavailable: {exc.message}",
            retry_after_seconds=getattr(exc, "retry_after_seconds", None),
        )


def error_payload(exc: WorkforceError) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": exc.code,
        "message": exc.message,
    }
    source = getattr(exc, "source", None)
    if source:
        error["source"] = source
    retry_after = getattr(exc, "retry_after_seconds", None)
    if retry_after is not None:
        error["retry_after_seconds"] = int(ceil(retry_after))
    return {"error": error}
