from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

FailureKind = Literal["timeout", "http_error", "malformed", "empty", "unavailable", "error"]


class QueryValidationError(ValueError):
    """Raised for empty, non-string or oversized queries. No job is created."""


class UrlNotAllowedError(ValueError):
    """Raised for non-HTTP(S) schemes and private/loopback targets."""


@dataclass(slots=True)
class ProviderFailure:
    """One rung of a fallback ladder that did not produce a result."""

    provider: str
    kind: FailureKind
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"provider": self.provider, "kind": self.kind, "message": self.message}


class ProviderError(RuntimeError):
    """Raised inside a provider strategy; the adapter turns it into a ProviderFailure."""

    kind: FailureKind = "error"

    def __init__(self, message: str, kind: FailureKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class MalformedResponseError(ProviderError):
    """A provider answered but the payload could not be used."""

    kind: FailureKind = "malformed"


class StageFailure(RuntimeError):
    """A required stage exhausted every provider and has no local fallback."""

    def __init__(self, stage: str, message: str, failures: list[ProviderFailure] | None = None):
        super().__init__(message)
        self.stage = stage
        self.failures = list(failures or [])


class ResearchCancelled(RuntimeError):
    """The caller cancelled the job (e.g. disconnected from the stream)."""

    def __init__(self, message: str = "Research cancelled by caller"):
        super().__init__(message)


class StrictModeFailure(Exception):
    """The reliability gate could not satisfy the strict-mode threshold."""

    def __init__(
        self,
        message: str,
        *,
        source_statuses: list[Any] | None = None,
        recommendations: list[str] | None = None,
        phase: str = "reachability",
    ):
        super().__init__(message)
        self.message = message
        self.source_statuses = list(source_statuses or [])
        self.recommendations = list(recommendations or [])
        self.phase = phase

    @property
    def reachable_sources(self) -> list[dict[str, Any]]:
        return [
            {"name": s.name, "url": s.base_url, "responseTime": s.response_time}
            for s in self.source_statuses
            if s.status == "success"
        ]

    @property
    def unreachable_sources(self) -> list[dict[str, Any]]:
        return [
            {
                "name": s.name,
                "url": s.base_url,
                "reason": s.error or s.status,
                "responseTime": s.response_time,
            }
            for s in self.source_statuses
            if s.status != "success"
        ]

    def to_response(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "strictModeFailure": True,
            "phase": self.phase,
            "sourceStatuses": [
                s.model_dump(by_alias=True, exclude_none=True) for s in self.source_statuses
            ],
            "unreachableSources": self.unreachable_sources,
            "reachableSources": self.reachable_sources,
            "recommendations": self.recommendations,
        }
