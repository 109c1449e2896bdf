from __future__ import annotations

from collections import OrderedDict

from app.models.research import ResearchJob


class JobRegistry:
    """Process-lifetime lookup of recent jobs for the status endpoint.

    Bounded; the oldest job is evicted first. Holds snapshots only.
    """

    def __init__(self, max_jobs: int = 200):
        self.max_jobs = max(1, max_jobs)
        self._jobs: OrderedDict[str, ResearchJob] = OrderedDict()

    def record(self, job: ResearchJob) -> None:
        self._jobs[job.id] = job.snapshot()
        self._jobs.move_to_end(job.id)
        while len(self._jobs) > self.max_jobs:
            self._jobs.popitem(last=False)

    def get(self, job_id: str) -> ResearchJob | None:
        job = self._jobs.get(job_id)
        return job.snapshot() if job is not None else None

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs
