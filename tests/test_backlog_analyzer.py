"""Tests for resuming analysis of stored transcripts."""
from datetime import datetime

import pytest

from callsync.services.backlog_analyzer import analyze_backlog
from callsync.services.keyword_classifier import KeywordClassifier

from conftest import make_analysis, make_transcript

FAST = {"retry_delay": 0, "batch_delay": 0, "jitter": 0}


class TestAnalyzeBacklog:
    @pytest.mark.asyncio
    async def test_only_unanalyzed_transcripts_are_dispatched(self, store):
        store.upsert_transcript(make_transcript("DONE", call_start=datetime(2025, 12, 2)))
        store.upsert_transcript(make_transcript("OLD", call_start=datetime(2025, 12, 3)))
        store.upsert_transcript(make_transcript("NEW", call_start=datetime(2025, 12, 9)))
        store.save_analysis("DONE", make_analysis(), "test-model")

        result = await analyze_backlog(store, KeywordClassifier(), limit=1, dispatcher_options=FAST)

        assert result.analyzed_keys == ["NEW"]
        assert not store.has_analysis("OLD")

        rest = await analyze_backlog(store, KeywordClassifier(), dispatcher_options=FAST)
        assert rest.analyzed_keys == ["OLD"]
        assert store.count_analyses() == 3

    @pytest.mark.asyncio
    async def test_nothing_pending(self, store):
        result = await analyze_backlog(store, KeywordClassifier())
        assert result.total == 0
