"""
Backlog Analyzer

Analyzes every stored transcript that has no analysis yet, newest calls
first. Safe to interrupt and re-run: finished analyses are persisted as
they complete and are excluded from the next run.

Usage:
    python -m callsync.services.backlog_analyzer [--limit N] [--classifier keyword|llm]

Author: CallSync Team
Date: 2026-01-12
"""

import argparse
import asyncio
import logging
from typing import Any, Dict, List, Optional

from prometheus_client import start_http_server

from callsync.common.config import require_settings, settings
from callsync.common.db import init_engine
from callsync.common.records import TranscriptRecord
from callsync.services.dispatcher import AnalysisDispatcher, DispatchResult, log_progress
from callsync.services.store import TranscriptStore
from callsync.services.sync_service import Analyzer, build_analyzer, close_analyzer

logger = logging.getLogger("backlog")


async def analyze_backlog(
    store: TranscriptStore,
    analyzer: Analyzer,
    limit: Optional[int] = None,
    dispatcher_options: Optional[Dict[str, Any]] = None,
) -> DispatchResult:
    """Dispatch the classifier over transcripts lacking an analysis."""
    pending = store.pending_analysis(limit)
    logger.info(f"[backlog] {len(pending)} transcripts need analysis")
    if not pending:
        return DispatchResult()

    def persist(transcript: TranscriptRecord, analysis) -> None:
        store.save_analysis(
            transcript.vendor_call_key, analysis, analyzer.model,
            agent_name=transcript.agent_name,
        )

    dispatcher = AnalysisDispatcher(analyzer.analyze, persist, **(dispatcher_options or {}))
    dispatcher.subscribe(log_progress())
    return await dispatcher.run(pending)


async def run_backlog(limit: Optional[int], classifier: str) -> DispatchResult:
    init_engine()
    analyzer = build_analyzer(classifier)
    try:
        return await analyze_backlog(TranscriptStore(), analyzer, limit)
    finally:
        await close_analyzer(analyzer)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Analyze stored transcripts that have no analysis")
    parser.add_argument("--limit", type=int, default=None, help="Maximum transcripts to analyze")
    parser.add_argument("--classifier", choices=("llm", "keyword"), default="llm")
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    require_settings("database_url")

    if settings.metrics_port > 0:
        start_http_server(settings.metrics_port)

    result = asyncio.run(run_backlog(args.limit, args.classifier))

    print(f"[backlog] Analyzed: {result.analyzed}/{result.total}")
    print(f"[backlog] Failed:   {result.failed}")
    for failure in result.failures[:settings.error_summary_limit]:
        print(f"[backlog]   - {failure.vendor_call_key}: {failure.reason}")


if __name__ == "__main__":
    main()
