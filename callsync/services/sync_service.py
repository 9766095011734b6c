"""
Daily Delta Sync Service

Runs the transcript pipeline end to end:
1. Resolve the delta window from the newest stored call
2. Fetch raw records for the window from Domo
3. Transform and upsert each record into the transcript table
4. Analyze imported transcripts that have no analysis yet
5. Record the run summary in sync_run

Every run returns a SyncStats value; nothing is kept in module state.
Per-record failures are counted and the first few messages surface in
the summary. A failure to compute the window aborts the run.

Usage:
    python -m callsync.services.sync_service [--dry-run] [--query-api]
        [--limit N] [--classifier keyword|llm] [--loop]

Author: CallSync Team
Date: 2026-01-12
"""

import argparse
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol

from prometheus_client import Counter, Histogram, start_http_server

from callsync.common.config import require_settings, settings
from callsync.common.db import init_engine
from callsync.common.records import TranscriptRecord
from callsync.services.classifier import OpenRouterClient, TranscriptClassifier
from callsync.services.dispatcher import AnalysisDispatcher, log_progress
from callsync.services.domo_client import client_from_settings
from callsync.services.keyword_classifier import KeywordClassifier
from callsync.services.store import TranscriptStore, UpsertPolicy
from callsync.services.transform import transform_record
from callsync.services.window import SyncWindow, resolve_window

logger = logging.getLogger("sync")

# Prometheus metrics for monitoring
SYNC_FETCHED = Counter('sync_fetched_total', 'Raw records fetched from the vendor source')
SYNC_IMPORTED = Counter('sync_imported_total', 'Transcripts upserted by sync runs')
SYNC_ERRORS = Counter('sync_errors_total', 'Per-record errors during sync runs')
SYNC_WINDOW_DAYS = Histogram(
    'sync_window_days', 'Days covered by each sync window',
    buckets=(1, 2, 3, 7, 14, 30, 60, 90, 180, 365)
)

METHOD_FULL_EXPORT = "full_export"
METHOD_QUERY = "query"


class RecordSource(Protocol):
    async def fetch(self, window: SyncWindow, limit: Optional[int] = None,
                    full_export: bool = True) -> List[Dict[str, Any]]:
        ...


class Analyzer(Protocol):
    model: str

    async def analyze(self, transcript: TranscriptRecord) -> Any:
        ...


@dataclass
class SyncStats:
    """Summary of one sync run."""
    window: Optional[SyncWindow] = None
    method: str = METHOD_FULL_EXPORT
    dry_run: bool = False
    fetched: int = 0
    imported: int = 0
    analyzed: int = 0
    skipped: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)
    error_limit: int = settings.error_summary_limit
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    def add_error(self, key: Optional[str], reason: str) -> None:
        """Count an error; keep the message only while under the cap."""
        self.errors += 1
        if len(self.error_messages) < self.error_limit:
            self.error_messages.append(f"{key or 'unknown'}: {reason}")

    @property
    def elapsed_seconds(self) -> float:
        end = self.finished_at or datetime.utcnow()
        return (end - self.started_at).total_seconds()

    def summary(self) -> Dict[str, Any]:
        return {
            "window": self.window.as_params() if self.window else None,
            "method": self.method,
            "dry_run": self.dry_run,
            "fetched": self.fetched,
            "imported": self.imported,
            "analyzed": self.analyzed,
            "skipped": self.skipped,
            "errors": self.errors,
            "error_messages": list(self.error_messages),
            "elapsed_seconds": round(self.elapsed_seconds, 1),
        }


async def run_sync(
    store: TranscriptStore,
    source: RecordSource,
    analyzer: Optional[Analyzer] = None,
    *,
    baseline: date = settings.sync_baseline_date,
    full_export: bool = settings.sync_use_full_export,
    dry_run: bool = False,
    limit: Optional[int] = None,
    policy: UpsertPolicy = UpsertPolicy(settings.sync_upsert_policy),
    today: Optional[date] = None,
    dispatcher_options: Optional[Dict[str, Any]] = None,
) -> SyncStats:
    """
    Run one delta sync.
    
    Args:
        store: Persistence gateway
        source: Vendor record source (DomoClient in production)
        analyzer: Classifier for new transcripts; None skips analysis
        baseline: Earliest call date ever fetched
        full_export: Use the untruncated full export instead of the query API
        dry_run: Fetch and transform only; write nothing
        limit: Maximum records to fetch
        policy: Transcript merge policy on conflict
        today: Override for the current UTC date
        dispatcher_options: Keyword overrides for AnalysisDispatcher
        
    Returns:
        SyncStats: Counts and capped error messages for the run
    """
    stats = SyncStats(
        method=METHOD_FULL_EXPORT if full_export else METHOD_QUERY,
        dry_run=dry_run,
    )

    # Window failures propagate: there is no safe default window
    stats.window = resolve_window(store.latest_call_start(), baseline, today)
    logger.info(
        f"[sync] Window {stats.window.start_date} -> {stats.window.end_date} "
        f"via {stats.method}{' (dry run)' if dry_run else ''}"
    )

    if stats.window.is_empty:
        logger.warning("[sync] Baseline is in the future, nothing to fetch")
        stats.finished_at = datetime.utcnow()
        return stats

    SYNC_WINDOW_DAYS.observe(stats.window.span_days)

    raw_records = await source.fetch(stats.window, limit=limit, full_export=full_export)
    stats.fetched = len(raw_records)
    SYNC_FETCHED.inc(stats.fetched)
    logger.info(f"[sync] Fetched {stats.fetched} records")

    records: List[TranscriptRecord] = []
    for raw in raw_records:
        try:
            record = transform_record(raw)
        except Exception as ex:
            stats.add_error(raw.get("VendorCallKey"), f"transform failed: {ex}")
            continue
        if record is None:
            stats.skipped += 1
            continue
        records.append(record)

    if dry_run:
        for record in records[:3]:
            logger.info(
                f"[sync] Sample {record.vendor_call_key}: agent={record.agent_name} "
                f"start={record.call_start} messages={len(record.messages or [])}"
            )
        stats.finished_at = datetime.utcnow()
        return stats

    result = store.import_records(records, policy)
    stats.imported = result.imported
    SYNC_IMPORTED.inc(result.imported)
    for failure in result.failures:
        stats.add_error(failure["vendor_call_key"], failure["error"])

    if analyzer is not None and result.imported_keys:
        already = store.analyzed_keys(result.imported_keys)
        stats.skipped += len(already)
        pending = store.load_transcripts(
            key for key in result.imported_keys if key not in already
        )
        logger.info(f"[sync] {len(pending)} transcripts need analysis, {len(already)} already analyzed")

        if pending:
            def persist(transcript: TranscriptRecord, analysis) -> None:
                store.save_analysis(
                    transcript.vendor_call_key, analysis, analyzer.model,
                    agent_name=transcript.agent_name,
                )

            dispatcher = AnalysisDispatcher(analyzer.analyze, persist, **(dispatcher_options or {}))
            dispatcher.subscribe(log_progress())
            dispatched = await dispatcher.run(pending)
            stats.analyzed = dispatched.analyzed
            for failure in dispatched.failures:
                stats.add_error(failure.vendor_call_key, failure.reason)

    SYNC_ERRORS.inc(stats.errors)
    stats.finished_at = datetime.utcnow()
    store.record_sync_run(stats)
    return stats


def build_analyzer(kind: str) -> Analyzer:
    """keyword -> KeywordClassifier, llm -> TranscriptClassifier over OpenRouter."""
    if kind == "keyword":
        return KeywordClassifier()
    if kind == "llm":
        require_settings("openrouter_api_key")
        return TranscriptClassifier(OpenRouterClient(settings.openrouter_api_key))
    raise ValueError(f"Unknown classifier: {kind}")


async def close_analyzer(analyzer: Optional[Analyzer]) -> None:
    client = getattr(analyzer, "client", None)
    if client is not None:
        await client.aclose()


def print_summary(stats: SyncStats) -> None:
    summary = stats.summary()
    print("[sync] " + "=" * 50)
    print("[sync] SYNC COMPLETE" + (" (DRY RUN)" if stats.dry_run else ""))
    if summary["window"]:
        print(f"[sync]   Sync period: {summary['window']['startDate']} to {summary['window']['endDate']}")
    print(f"[sync]   Method:      {summary['method']}")
    print(f"[sync]   Fetched:     {summary['fetched']}")
    print(f"[sync]   Imported:    {summary['imported']}")
    print(f"[sync]   Analyzed:    {summary['analyzed']}")
    print(f"[sync]   Skipped:     {summary['skipped']}")
    print(f"[sync]   Errors:      {summary['errors']}")
    for message in summary["error_messages"]:
        print(f"[sync]     - {message}")
    print(f"[sync]   Elapsed:     {summary['elapsed_seconds']}s")


async def sync_once(args: argparse.Namespace) -> SyncStats:
    init_engine()
    store = TranscriptStore()
    analyzer = None if args.dry_run else build_analyzer(args.classifier)

    try:
        async with client_from_settings() as source:
            stats = await run_sync(
                store,
                source,
                analyzer,
                full_export=not args.query_api,
                dry_run=args.dry_run,
                limit=args.limit,
            )
    finally:
        await close_analyzer(analyzer)

    print_summary(stats)
    return stats


async def run_service(args: argparse.Namespace) -> None:
    """Run once, or forever every sync_interval_seconds with --loop."""
    while True:
        started = time.monotonic()
        try:
            await sync_once(args)
        except Exception as ex:
            if not args.loop:
                raise
            logger.exception(f"[sync][error] Sync run failed: {ex}")

        if not args.loop:
            return
        await asyncio.sleep(max(0.0, settings.sync_interval_seconds - (time.monotonic() - started)))


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Daily delta sync of call transcripts from Domo")
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Fetch and transform only; no database writes, no analysis",
    )
    parser.add_argument(
        "--query-api", action="store_true",
        help="Use the fast query API (truncates conversations at 1024 chars)",
    )
    parser.add_argument("--limit", type=int, default=None, help="Maximum records to fetch")
    parser.add_argument(
        "--classifier", choices=("llm", "keyword"), default="llm",
        help="Analysis backend for new transcripts (default: llm)",
    )
    parser.add_argument(
        "--loop", action="store_true",
        help=f"Repeat every SYNC_INTERVAL_SECONDS ({settings.sync_interval_seconds}s)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Configuration failure is fatal before any work starts
    require_settings("database_url", "domo_client_id", "domo_client_secret", "domo_dataset_id")

    if settings.metrics_port > 0:
        start_http_server(settings.metrics_port)
        print(f"[sync] Prometheus metrics server started on port {settings.metrics_port}")

    asyncio.run(run_service(args))


if __name__ == "__main__":
    main()
