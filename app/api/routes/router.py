from __future__ import annotations

from fastapi import APIRouter

from app.api.deps import validate_query
from app.models.schemas import RouteRequest, RouteResponse
from app.services.intent_classifier import classify, plan_tool_chain

router = APIRouter(prefix="/api", tags=["router"])


@router.post("/route", response_model=RouteResponse)
async def route_query(request: RouteRequest):
    """Classify a query and return the tool chain the orchestrator would run."""
    query = validate_query(request.query)
    analysis = classify(query)
    return RouteResponse(analysis=analysis, tool_chain=plan_tool_chain(query, analysis))
