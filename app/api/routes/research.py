from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from app.agents.orchestrator import ResearchOrchestrator, clamp_limit
from app.api.deps import get_gate, get_registry, get_tool_adapter, validate_query
from app.errors import StrictModeFailure
from app.models.schemas import RunRequest, SearchRequest
from app.services import logger as log_service
from app.services import streaming
from app.services.job_registry import JobRegistry
from app.services.reliability_gate import SourceReliabilityGate
from app.services.tool_adapter import ToolAdapter

router = APIRouter(prefix="/api/research", tags=["research"])


@router.post("/run")
async def run_research(
    request: RunRequest,
    adapter: ToolAdapter = Depends(get_tool_adapter),
    gate: SourceReliabilityGate = Depends(get_gate),
    registry: JobRegistry = Depends(get_registry),
):
    """Run one research job, streamed as SSE or returned when finished."""
    query = validate_query(request.query)
    orchestrator = ResearchOrchestrator(
        query,
        adapter=adapter,
        options=request.options,
        gate=gate,
        on_progress=registry.record,
    )
    log_service.log_event(
        event_type="research_started",
        message="Research started",
        job_id=orchestrator.job.id,
        stream=request.stream,
        query=query[:100],
    )

    if not request.stream:
        job = await orchestrator.execute()
        if orchestrator.strict_mode_failure is not None:
            body = orchestrator.strict_mode_failure.to_response()
            body["job"] = job.to_json_dict()
            return JSONResponse(status_code=503, content=body)
        return job.to_json_dict()

    async def event_generator():
        try:
            async for snapshot in orchestrator.run():
                yield streaming.job_update(snapshot).to_sse()
            yield streaming.done().to_sse()
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in research stream",
                error=str(e),
                job_id=orchestrator.job.id,
            )
            yield streaming.error(f"Research stream failed: {e}").to_sse()

    return EventSourceResponse(event_generator(), sep="\n")


@router.get("/status/{job_id}")
async def job_status(job_id: str, registry: JobRegistry = Depends(get_registry)):
    job = registry.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_json_dict()


@router.post("/search")
async def gated_search(
    request: SearchRequest,
    gate: SourceReliabilityGate = Depends(get_gate),
):
    """Reliability-gated realtime search over the source catalog."""
    query = validate_query(request.query)
    try:
        outcome = await gate.search(
            query,
            limit=clamp_limit(request.limit),
            country=request.country,
            seed_urls=request.seed_urls,
            strict_mode=request.strict_mode,
            min_sources=request.min_sources,
            deep_scrape=request.deep_scrape,
        )
    except StrictModeFailure as failure:
        log_service.log_event(
            event_type="strict_mode_failure",
            message=failure.message,
            phase=failure.phase,
        )
        return JSONResponse(status_code=503, content=failure.to_response())
    return outcome.to_response(strict_mode=request.strict_mode).to_json_dict()
