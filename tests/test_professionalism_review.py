"""Tests for professionalism review sampling and dispatch."""
from datetime import datetime

import pytest

from callsync.common.records import AGENT, Message
from callsync.common.schemas import ProfessionalismAssessment
from callsync.services.professionalism_review import (
    review_agents, sample_agent_calls, select_review_sample
)

from conftest import make_analysis, make_transcript

FAST = {"retry_delay": 0, "batch_delay": 0, "jitter": 0}


def rows(agent, sentiment, count, prefix, message_count=6):
    return [
        {
            "vendor_call_key": f"{prefix}{i}",
            "agent_name": agent,
            "customer_sentiment": sentiment,
            "message_count": message_count,
            "call_start": datetime(2025, 12, 1 + i),
        }
        for i in range(count)
    ]


class FakeReviewer:
    model = "fake-reviewer"
    min_messages = 4

    def __init__(self):
        self.reviewed = []

    async def analyze(self, transcript):
        self.reviewed.append(transcript.vendor_call_key)
        return ProfessionalismAssessment(
            agent_professionalism=4, agent_caused_frustration=False,
            communication_clarity=4, active_listening=4, empathy=4,
        )


class TestSampling:
    def test_negative_first_mix(self):
        sample = sample_agent_calls(
            rows("A", "negative", 6, "n") + rows("A", "positive", 3, "p") + rows("A", "neutral", 5, "u"),
            max_calls=8,
        )
        assert sample == ["n5", "n4", "n3", "n2", "p2", "p1", "u4", "u3"]

    def test_neutral_fills_the_remainder(self):
        sample = sample_agent_calls(
            rows("A", "negative", 1, "n") + rows("A", "positive", 5, "p") + rows("A", "neutral", 9, "u"),
            max_calls=8,
        )
        assert len([k for k in sample if k.startswith("n")]) == 1
        assert len([k for k in sample if k.startswith("p")]) == 2
        assert len([k for k in sample if k.startswith("u")]) == 5

    def test_skips_short_and_reviewed_calls(self):
        data = rows("Alice", "negative", 3, "a") + rows("Bob", "negative", 2, "b", message_count=3)
        sample = select_review_sample(data, calls_per_agent=8, min_messages=4, reviewed={"a0"})
        assert sample == {"Alice": ["a2", "a1"]}

    def test_agent_filter_and_unknown_bucket(self):
        data = rows(None, "negative", 1, "x") + rows("Alice", "negative", 1, "a")
        assert select_review_sample(data, 8, 4, agents=["Unknown"]) == {"Unknown": ["x0"]}


class TestReviewAgents:
    @pytest.mark.asyncio
    async def test_reviews_are_persisted_once(self, store):
        for key in ("A", "B"):
            store.upsert_transcript(make_transcript(key))
            store.save_analysis(key, make_analysis(customer="negative"), "test-model", agent_name="Alice")
        store.upsert_transcript(make_transcript("SHORT", messages=[Message(AGENT, "Hi", 1)]))
        store.save_analysis("SHORT", make_analysis(customer="negative"), "test-model", agent_name="Alice")

        reviewer = FakeReviewer()
        result = await review_agents(store, reviewer, calls_per_agent=8, dispatcher_options=FAST)

        assert result.analyzed == 2
        assert sorted(reviewer.reviewed) == ["A", "B"]
        assert len(store.review_rows()) == 2

        again = await review_agents(store, reviewer, calls_per_agent=8, dispatcher_options=FAST)
        assert again.total == 0
