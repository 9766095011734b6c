"""
Call-Log Export Loader

Imports a tab-delimited call-log export (one call per line, the
Conversation column holding the raw conversation JSON) into the
transcript table.

Use --policy fill_missing to backfill columns that earlier imports left
empty without touching values already stored.

Usage:
    python -m callsync.services.tsv_loader path/to/export.tsv [--policy fill_missing]

Author: CallSync Team
Date: 2026-01-12
"""

import argparse
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from callsync.common.config import require_settings, settings
from callsync.common.db import init_engine
from callsync.services.store import TranscriptStore, UpsertPolicy
from callsync.services.transform import read_tsv_export, transform_record

logger = logging.getLogger("tsv_loader")


@dataclass
class LoadStats:
    total: int = 0
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": self.errors,
            "error_messages": list(self.error_messages),
        }


def load_export(
    path: Path,
    store: TranscriptStore,
    policy: UpsertPolicy = UpsertPolicy.OVERWRITE,
    error_limit: int = settings.error_summary_limit,
) -> LoadStats:
    """
    Transform and import every row of an export file.
    
    Rows without a VendorCallKey are skipped. Transform and import
    failures are counted per record and never stop the load.
    """
    stats = LoadStats()
    records = []
    failures = []

    for row in read_tsv_export(path):
        stats.total += 1
        try:
            record = transform_record(row)
        except Exception as ex:
            stats.errors += 1
            failures.append(f"{row.get('VendorCallKey')}: transform failed: {ex}")
            logger.error(f"[tsv] Error transforming {row.get('VendorCallKey')}: {ex}")
            continue
        if record is None:
            stats.skipped += 1
            continue
        records.append(record)

    logger.info(f"[tsv] Parsed {stats.total} rows, {len(records)} transcripts from {path}")

    result = store.import_records(records, policy)
    stats.imported = result.imported
    stats.errors += result.errors
    failures.extend(f"{failure['vendor_call_key']}: {failure['error']}" for failure in result.failures)
    stats.error_messages = failures[:error_limit]
    return stats


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Import a tab-delimited call-log export")
    parser.add_argument("path", type=Path, help="Export file (.tsv)")
    parser.add_argument(
        "--policy", choices=[p.value for p in UpsertPolicy], default=settings.sync_upsert_policy,
        help="Conflict policy for calls already stored",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    require_settings("database_url")

    if not args.path.exists():
        parser.error(f"File not found: {args.path}")

    init_engine()
    stats = load_export(args.path, TranscriptStore(), UpsertPolicy(args.policy))

    print(f"[tsv] Total rows: {stats.total}")
    print(f"[tsv] Imported:   {stats.imported}")
    print(f"[tsv] Skipped:    {stats.skipped}")
    print(f"[tsv] Errors:     {stats.errors}")
    for message in stats.error_messages:
        print(f"[tsv]   - {message}")


if __name__ == "__main__":
    main()
