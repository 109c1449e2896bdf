from __future__ import annotations

from typing import Any

from fastapi import Depends

from app.config import ProviderConfig, settings
from app.errors import QueryValidationError
from app.services.job_registry import JobRegistry
from app.services.reliability_gate import SourceReliabilityGate
from app.services.tool_adapter import ToolAdapter

_registry = JobRegistry(settings.job_registry_size)


def validate_query(query: Any) -> str:
    """Trimmed query, or QueryValidationError before any job exists."""
    if not isinstance(query, str):
        raise QueryValidationError("Query is required")
    trimmed = query.strip()
    if not trimmed:
        raise QueryValidationError("Query cannot be empty")
    if len(trimmed) > settings.max_query_length:
        raise QueryValidationError(
            f"Query exceeds {settings.max_query_length} characters"
        )
    return trimmed


def get_registry() -> JobRegistry:
    return _registry


def get_provider_config() -> ProviderConfig:
    return ProviderConfig.from_settings(settings)


def get_gate() -> SourceReliabilityGate:
    return SourceReliabilityGate()


def get_tool_adapter(
    config: ProviderConfig = Depends(get_provider_config),
    gate: SourceReliabilityGate = Depends(get_gate),
) -> ToolAdapter:
    return ToolAdapter(config, gate=gate)
