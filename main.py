"""Corroborate - research orchestration CLI.

Runs one research job and prints each stage transition and the final report.
"""

import argparse
import asyncio
import json
import sys

from app.agents.orchestrator import ResearchOrchestrator
from app.api.deps import validate_query
from app.config import ProviderConfig, settings
from app.errors import QueryValidationError
from app.models.research import JobStatus
from app.models.schemas import RunOptions
from app.services.tool_adapter import ToolAdapter


async def run_research(query: str, options: RunOptions, as_json: bool = False) -> int:
    """Run research on the given query. Returns a process exit code."""
    adapter = ToolAdapter(ProviderConfig.from_settings(settings))
    orchestrator = ResearchOrchestrator(query, adapter=adapter, options=options)

    if not as_json:
        print(f"Research query: {query}")
        print("-" * 50)

    final = orchestrator.job
    async for job in orchestrator.run():
        final = job
        if as_json:
            continue
        if job.status is JobStatus.FAILED:
            print(f"\n[!] Failed ({job.failure_reason}): {job.error}")
        else:
            print(f"[{job.progress:>3}%] {job.status.value}")
            if job.status is JobStatus.SEARCHING and job.analysis is not None:
                print(f"       intent: {job.analysis.intent.value} ({job.analysis.confidence:.2f})")
            if job.status is JobStatus.ANALYZING and job.progress == 50:
                print(f"       sources: {len(job.sources)}")

    if as_json:
        print(json.dumps(final.to_json_dict(), indent=2))
    elif final.report is not None:
        report = final.report
        print(f"\n{'=' * 50}")
        print(report.title)
        print(f"{'=' * 50}")
        print(report.summary)
        for section in report.sections:
            print(f"\n## {section.heading}\n{section.content.rstrip()}")
        print("\nSources:")
        for citation in report.citations:
            print(f"  {citation.text} - {citation.context}")
        print(
            f"\nConfidence: {report.metadata.confidence_score:.2f}, "
            f"verified claims: {report.metadata.verified_claims}/{len(final.findings)}"
        )

    if orchestrator.strict_mode_failure is not None and not as_json:
        for tip in orchestrator.strict_mode_failure.recommendations:
            print(f"  - {tip}")
    return 0 if final.status is JobStatus.COMPLETED else 1


def main():
    parser = argparse.ArgumentParser(description="Corroborate research orchestrator")
    parser.add_argument("--query", "-q", required=True, help="Research query")
    parser.add_argument("--strict", action="store_true", help="Fail unless enough sources are reachable")
    parser.add_argument("--min-sources", type=int, default=2, help="Strict-mode source threshold")
    parser.add_argument("--check-sources", action="store_true", help="Probe the source catalog first")
    parser.add_argument("--limit", type=int, help="Max search results to consider (1-20)")
    parser.add_argument("--country", help="Country hint for the source catalog (e.g. sa)")
    parser.add_argument("--seed-url", action="append", default=[], help="Extra source URL (repeatable)")
    parser.add_argument("--json", action="store_true", help="Print the final job as JSON")

    args = parser.parse_args()

    try:
        query = validate_query(args.query)
    except QueryValidationError as e:
        parser.error(str(e))

    options = RunOptions(
        strict_mode=args.strict,
        min_sources=args.min_sources,
        check_sources=args.check_sources,
        limit=args.limit,
        country=args.country,
        seed_urls=args.seed_url,
    )
    sys.exit(asyncio.run(run_research(query, options, as_json=args.json)))


if __name__ == "__main__":
    main()
