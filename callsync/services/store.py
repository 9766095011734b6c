"""
Persistence Gateway

Idempotent storage of transcripts, analyses and professionalism reviews,
keyed by vendor_call_key. Every write is a single-row
INSERT ... ON CONFLICT, committed in its own transaction, so one
record's failure never rolls back or blocks the rest of a batch.

Merge policies for transcript imports:
- overwrite:    every column takes the new value (last write wins,
                a NULL in the new record erases the stored value)
- fill_missing: only columns that are NULL in the stored row are filled

Author: CallSync Team
Date: 2026-01-12
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from callsync.common.db import get_session, upsert_statement
from callsync.common.models import (
    ProfessionalismReview, SyncRun, Transcript, TranscriptAnalysis
)
from callsync.common.records import TranscriptRecord
from callsync.common.schemas import CallAnalysis, ProfessionalismAssessment

logger = logging.getLogger("store")

TRANSCRIPT_FIELDS = (
    "call_start", "call_end", "duration_seconds", "disposition",
    "department", "status", "agent_name", "agent_role", "agent_profile",
    "agent_email", "number_of_holds", "hold_duration", "messages",
)


class UpsertPolicy(str, enum.Enum):
    OVERWRITE = "overwrite"
    FILL_MISSING = "fill_missing"


@dataclass
class ImportResult:
    """Outcome of importing a batch of transcripts."""
    imported: int = 0
    errors: int = 0
    imported_keys: List[str] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)


class TranscriptStore:
    """
    Key-value style access to the transcript tables.
    
    Args:
        session_factory: Callable returning a new SQLAlchemy Session
    """

    def __init__(self, session_factory: Callable[[], Session] = get_session):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Transcripts
    # ------------------------------------------------------------------

    def latest_call_start(self) -> Optional[datetime]:
        """Most recent call_start stored. Errors propagate."""
        with self._session_factory() as session:
            return session.execute(select(func.max(Transcript.call_start))).scalar()

    def upsert_transcript(
        self,
        record: TranscriptRecord,
        policy: UpsertPolicy = UpsertPolicy.OVERWRITE,
    ) -> None:
        """
        Insert or update one transcript by vendor_call_key.
        
        Raises:
            sqlalchemy.exc.SQLAlchemyError: If the write is rejected
        """
        policy = UpsertPolicy(policy)
        values = record.to_row()

        with self._session_factory() as session:
            stmt = upsert_statement(session, Transcript).values(**values)
            if policy is UpsertPolicy.OVERWRITE:
                updates = {name: stmt.excluded[name] for name in TRANSCRIPT_FIELDS}
            else:
                table = Transcript.__table__
                updates = {
                    name: func.coalesce(table.c[name], stmt.excluded[name])
                    for name in TRANSCRIPT_FIELDS
                }
            updates["updated_at"] = func.now()

            session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["vendor_call_key"],
                    set_=updates,
                )
            )
            session.commit()

    def import_records(
        self,
        records: Iterable[TranscriptRecord],
        policy: UpsertPolicy = UpsertPolicy.OVERWRITE,
    ) -> ImportResult:
        """
        Upsert many transcripts, one transaction per record.
        
        A failing record is logged and counted; the batch continues.
        """
        result = ImportResult()
        for record in records:
            try:
                self.upsert_transcript(record, policy)
            except Exception as ex:
                result.errors += 1
                result.failures.append({
                    "vendor_call_key": record.vendor_call_key,
                    "error": str(ex),
                })
                logger.error(f"[store] Error importing {record.vendor_call_key}: {ex}")
                continue

            result.imported += 1
            result.imported_keys.append(record.vendor_call_key)
            if result.imported % 100 == 0:
                logger.info(f"[store] Imported {result.imported} transcripts...")
        return result

    def count_transcripts(self) -> int:
        with self._session_factory() as session:
            return session.execute(select(func.count(Transcript.id))).scalar_one()

    def get_transcript(self, key: str) -> Optional[TranscriptRecord]:
        with self._session_factory() as session:
            row = session.query(Transcript).filter_by(vendor_call_key=key).one_or_none()
            return TranscriptRecord.from_model(row) if row else None

    def load_transcripts(self, keys: Iterable[str]) -> List[TranscriptRecord]:
        keys = list(dict.fromkeys(keys))
        if not keys:
            return []
        with self._session_factory() as session:
            rows = session.execute(
                select(Transcript).where(Transcript.vendor_call_key.in_(keys))
            ).scalars().all()
            by_key = {row.vendor_call_key: TranscriptRecord.from_model(row) for row in rows}
        return [by_key[key] for key in keys if key in by_key]

    def pending_analysis(self, limit: Optional[int] = None) -> List[TranscriptRecord]:
        """Transcripts without an analysis, newest calls first."""
        with self._session_factory() as session:
            query = (
                select(Transcript)
                .outerjoin(
                    TranscriptAnalysis,
                    TranscriptAnalysis.vendor_call_key == Transcript.vendor_call_key,
                )
                .where(TranscriptAnalysis.id.is_(None))
                .order_by(Transcript.call_start.desc(), Transcript.id)
            )
            if limit:
                query = query.limit(limit)
            rows = session.execute(query).scalars().all()
            return [TranscriptRecord.from_model(row) for row in rows]

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    def has_analysis(self, key: str) -> bool:
        with self._session_factory() as session:
            found = session.execute(
                select(TranscriptAnalysis.id).where(TranscriptAnalysis.vendor_call_key == key)
            ).first()
            return found is not None

    def analyzed_keys(self, keys: Iterable[str]) -> Set[str]:
        """Subset of keys that already have an analysis."""
        keys = list(set(keys))
        if not keys:
            return set()
        with self._session_factory() as session:
            rows = session.execute(
                select(TranscriptAnalysis.vendor_call_key)
                .where(TranscriptAnalysis.vendor_call_key.in_(keys))
            ).scalars().all()
            return set(rows)

    def save_analysis(
        self,
        key: str,
        analysis: CallAnalysis,
        model: str,
        agent_name: Optional[str] = None,
        replace: bool = False,
    ) -> None:
        """
        Persist a validated analysis for one call.
        
        Without replace, a second write for the same key is ignored, so
        a redundant dispatch is harmless. replace=True is the explicit
        re-run path and overwrites the stored analysis.
        """
        values = analysis.model_dump()
        values.update(
            vendor_call_key=key,
            agent_name=agent_name,
            model=model,
            analyzed_at=datetime.utcnow(),
        )

        with self._session_factory() as session:
            stmt = upsert_statement(session, TranscriptAnalysis).values(**values)
            if replace:
                updates = {
                    name: stmt.excluded[name]
                    for name in values if name != "vendor_call_key"
                }
                updates["updated_at"] = func.now()
                stmt = stmt.on_conflict_do_update(
                    index_elements=["vendor_call_key"], set_=updates
                )
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=["vendor_call_key"])
            session.execute(stmt)
            session.commit()

    def count_analyses(self) -> int:
        with self._session_factory() as session:
            return session.execute(select(func.count(TranscriptAnalysis.id))).scalar_one()

    # ------------------------------------------------------------------
    # Professionalism reviews
    # ------------------------------------------------------------------

    def reviewed_keys(self, keys: Iterable[str]) -> Set[str]:
        keys = list(set(keys))
        if not keys:
            return set()
        with self._session_factory() as session:
            rows = session.execute(
                select(ProfessionalismReview.vendor_call_key)
                .where(ProfessionalismReview.vendor_call_key.in_(keys))
            ).scalars().all()
            return set(rows)

    def save_review(
        self,
        key: str,
        review: ProfessionalismAssessment,
        model: str,
        agent_name: Optional[str] = None,
    ) -> None:
        values = {
            "vendor_call_key": key,
            "agent_name": agent_name,
            "professionalism": review.agent_professionalism,
            "communication_clarity": review.communication_clarity,
            "active_listening": review.active_listening,
            "empathy": review.empathy,
            "de_escalation": review.de_escalation_skill,
            "caused_frustration": review.agent_caused_frustration,
            "customer_start_mood": review.customer_start_mood,
            "customer_end_mood": review.customer_end_mood,
            "agent_issues": review.agent_issues,
            "agent_strengths": review.agent_strengths,
            "summary": review.summary,
            "model": model,
            "reviewed_at": datetime.utcnow(),
        }
        with self._session_factory() as session:
            stmt = upsert_statement(session, ProfessionalismReview).values(**values)
            session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["vendor_call_key"],
                    set_={name: stmt.excluded[name] for name in values if name != "vendor_call_key"},
                )
            )
            session.commit()

    # ------------------------------------------------------------------
    # Read side for reporting
    # ------------------------------------------------------------------

    def analysis_rows(self) -> List[dict]:
        """Every analysis joined with its transcript's call metadata."""
        with self._session_factory() as session:
            rows = session.execute(
                select(TranscriptAnalysis, Transcript)
                .join(Transcript, Transcript.vendor_call_key == TranscriptAnalysis.vendor_call_key)
            ).all()
            return [
                {
                    "vendor_call_key": analysis.vendor_call_key,
                    "agent_name": transcript.agent_name or analysis.agent_name,
                    "department": transcript.department,
                    "disposition": transcript.disposition,
                    "duration_seconds": transcript.duration_seconds,
                    "call_start": transcript.call_start,
                    "message_count": len(transcript.messages or []),
                    "agent_sentiment": analysis.agent_sentiment,
                    "agent_sentiment_score": analysis.agent_sentiment_score,
                    "customer_sentiment": analysis.customer_sentiment,
                    "customer_sentiment_score": analysis.customer_sentiment_score,
                    "ai_discovered_topic": analysis.ai_discovered_topic,
                    "ai_discovered_subcategory": analysis.ai_discovered_subcategory,
                    "topic_confidence": analysis.topic_confidence,
                    "key_issues": analysis.key_issues or [],
                    "tags": analysis.tags or [],
                }
                for analysis, transcript in rows
            ]

    def review_rows(self) -> List[dict]:
        with self._session_factory() as session:
            rows = session.execute(select(ProfessionalismReview)).scalars().all()
            return [
                {
                    "vendor_call_key": row.vendor_call_key,
                    "agent_name": row.agent_name,
                    "professionalism": row.professionalism,
                    "communication_clarity": row.communication_clarity,
                    "active_listening": row.active_listening,
                    "empathy": row.empathy,
                    "de_escalation": row.de_escalation,
                    "caused_frustration": bool(row.caused_frustration),
                    "agent_issues": row.agent_issues or [],
                    "agent_strengths": row.agent_strengths or [],
                    "summary": row.summary,
                }
                for row in rows
            ]

    def call_counts_by_agent(self) -> Dict[Optional[str], int]:
        with self._session_factory() as session:
            rows = session.execute(
                select(Transcript.agent_name, func.count(Transcript.id))
                .group_by(Transcript.agent_name)
            ).all()
            return {name: count for name, count in rows}

    # ------------------------------------------------------------------
    # Sync audit
    # ------------------------------------------------------------------

    def record_sync_run(self, stats) -> None:
        """Persist the summary of a completed sync run."""
        with self._session_factory() as session:
            session.add(SyncRun(
                window_start=stats.window.start_date,
                window_end=stats.window.end_date,
                method=stats.method,
                fetched=stats.fetched,
                imported=stats.imported,
                analyzed=stats.analyzed,
                skipped=stats.skipped,
                errors=stats.errors,
                error_messages=list(stats.error_messages),
                started_at=stats.started_at,
                finished_at=stats.finished_at or datetime.utcnow(),
            ))
            session.commit()
