from __future__ import annotations

from app.models.events import EventType, SSEEvent
from app.models.research import ResearchJob


def job_update(job: ResearchJob) -> SSEEvent:
    """One frame per state transition, carrying the full job."""
    return SSEEvent(event=EventType.JOB_UPDATE, data=job.to_json_dict())


def done() -> SSEEvent:
    return SSEEvent(event=EventType.DONE)


def error(message: str) -> SSEEvent:
    return SSEEvent(event=EventType.ERROR, data={"error": message})
