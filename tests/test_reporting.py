"""Tests for agent rankings and the dashboard."""
import json

import pytest

from callsync.services.reporting import (
    UNRATED, build_dashboard, composite_score, mean, rank_agents, render_html,
    sentiment_breakdown, tier_for_score, top_counts, topic_breakdown, write_dashboard
)

from conftest import make_analysis, make_transcript


def review(agent, professionalism, clarity, listening, empathy, de_escalation=None,
           frustration=False, issues=(), strengths=()):
    return {
        "agent_name": agent,
        "professionalism": professionalism,
        "communication_clarity": clarity,
        "active_listening": listening,
        "empathy": empathy,
        "de_escalation": de_escalation,
        "caused_frustration": frustration,
        "agent_issues": list(issues),
        "agent_strengths": list(strengths),
    }


REVIEWS = [
    review("Alice", 5, 4, 5, 4, None, False, ["interrupted"], ["patient", "clear"]),
    review("Alice", 4, 4, 4, 5, 4, True, ["interrupted", "rushed"], ["clear"]),
    review("Bob", 4, 4, 4, 4),
]


class TestTiers:
    @pytest.mark.parametrize("score,tier", [
        (5.0, "exemplary"),
        (4.2, "exemplary"),
        (4.19, "professional"),
        (3.5, "professional"),
        (2.8, "adequate"),
        (2.0, "needs-coaching"),
        (1.99, "critical"),
        (0.0, "critical"),
    ])
    def test_threshold_is_inclusive_lower_bound(self, score, tier):
        assert tier_for_score(score) == tier


class TestCompositeScore:
    def test_weights_and_missing_de_escalation(self):
        scores = {"professionalism": 4, "communication_clarity": 4, "active_listening": 4,
                  "empathy": 4, "de_escalation": None}
        assert composite_score(scores, 0) == pytest.approx(3.85)

    def test_frustration_penalty_and_clamp(self):
        scores = {"professionalism": 2, "communication_clarity": 2, "active_listening": 2,
                  "empathy": 2, "de_escalation": 2}
        assert composite_score(scores, 50) == pytest.approx(1.0)
        assert composite_score(scores, 100) == 0.0

    def test_mean(self):
        assert mean([1, None, 3]) == 2
        assert mean([None]) is None


class TestRankAgents:
    def test_composite_landing_on_threshold_gets_higher_tier(self):
        # 4.6 weighted mean minus 20% frustration penalty is exactly 4.2
        reviews = [review("Dana", 5, 5, 5, 3, 5, frustration=(i == 0)) for i in range(5)]

        ranking = rank_agents(reviews)[0]

        assert ranking.overall_score == 4.2
        assert ranking.tier == "exemplary"

    @pytest.mark.parametrize("prof,empathy,frustrated,count,tier", [
        (5, 3, 1, 5, "exemplary"),
        (4, 3, 3, 20, "professional"),
        (3, 2, 0, 1, "adequate"),
        (2, 2, 0, 1, "needs-coaching"),
    ])
    def test_computed_composites_on_thresholds(self, prof, empathy, frustrated, count, tier):
        reviews = [
            review("Eve", prof, prof, prof, empathy, prof, frustration=(i < frustrated))
            for i in range(count)
        ]
        assert rank_agents(reviews)[0].tier == tier

    def test_rankings_match_hand_computed_scores(self):
        rankings = rank_agents(REVIEWS, {"Alice": 10, "Bob": 3, "Carol": 4})
        by_name = {r.agent_name: r for r in rankings}

        # Alice: (4.5*3 + 4.5*2 + 4.5*2 + 4*1.5 + 4*1.5) / 10 - 50% * 0.02
        assert by_name["Alice"].overall_score == pytest.approx(3.35)
        assert by_name["Alice"].tier == "adequate"
        assert by_name["Alice"].frustration_rate == 50.0
        assert by_name["Alice"].total_calls == 10
        assert by_name["Bob"].overall_score == pytest.approx(3.85)
        assert by_name["Bob"].tier == "professional"

    def test_agent_without_reviews_gets_placeholder(self):
        rankings = rank_agents(REVIEWS, {"Alice": 10, "Bob": 3, "Carol": 4})
        carol = rankings[-1]

        assert carol.agent_name == "Carol"
        assert carol.overall_score == 0.0
        assert carol.tier == UNRATED
        assert carol.reviewed_calls == 0
        assert [r.agent_name for r in rankings] == ["Bob", "Alice", "Carol"]

    def test_missing_agent_name_is_grouped_as_unknown(self):
        rankings = rank_agents([review(None, 4, 4, 4, 4)], {None: 2})
        assert [(r.agent_name, r.total_calls, r.reviewed_calls) for r in rankings] == [("Unknown", 2, 1)]

    def test_common_issues_and_strengths(self):
        alice = next(r for r in rank_agents(REVIEWS) if r.agent_name == "Alice")
        assert alice.common_issues == [("interrupted", 2), ("rushed", 1)]
        assert alice.common_strengths == [("clear", 2), ("patient", 1)]

    def test_top_counts_ties_keep_first_seen_order(self):
        assert top_counts([["b", "a"], ["c", "a"], ["b"]], n=3) == [("b", 2), ("a", 2), ("c", 1)]
        assert top_counts([["x", "y", "z"]], n=2) == [("x", 1), ("y", 1)]


class TestBreakdowns:
    ROWS = [
        {"agent_name": "Alice", "agent_sentiment": "positive", "customer_sentiment": "negative",
         "ai_discovered_topic": "Escrow", "ai_discovered_subcategory": "Shortage", "topic_confidence": 0.8},
        {"agent_name": "Alice", "agent_sentiment": "positive", "customer_sentiment": "neutral",
         "ai_discovered_topic": "Escrow", "ai_discovered_subcategory": "Shortage", "topic_confidence": 0.6},
        {"agent_name": "Bob", "agent_sentiment": "neutral", "customer_sentiment": "positive",
         "ai_discovered_topic": "Payment Issues", "ai_discovered_subcategory": "", "topic_confidence": 0.9},
    ]

    def test_sentiment_breakdown(self):
        breakdown = sentiment_breakdown(self.ROWS)
        assert breakdown["agent"] == {"positive": 2, "neutral": 1, "negative": 0}
        assert breakdown["customer"] == {"positive": 1, "neutral": 1, "negative": 1}

    def test_topic_breakdown(self):
        topics = topic_breakdown(self.ROWS)
        assert topics[0]["topic"] == "Escrow"
        assert topics[0]["count"] == 2
        assert topics[0]["percent"] == 66.7
        assert topics[0]["avg_confidence"] == 0.7
        assert topics[0]["negative_customers"] == 1
        assert topics[0]["subcategories"] == [{"name": "Shortage", "count": 2}]


class TestDashboard:
    def test_build_and_write_dashboard(self, store, tmp_path):
        store.upsert_transcript(make_transcript("A", agent_name="Alice"))
        store.upsert_transcript(make_transcript("B", agent_name="<script>"))
        store.save_analysis("A", make_analysis(customer="negative"), "test-model", agent_name="Alice")

        dashboard = build_dashboard(store)
        assert dashboard["totals"] == {"transcripts": 2, "analyzed": 1, "reviewed": 0, "agents": 2}
        assert dashboard["tier_distribution"][UNRATED] == 2

        json_path, html_path = write_dashboard(dashboard, tmp_path / "out")
        assert json.loads(json_path.read_text())["totals"]["analyzed"] == 1
        page = html_path.read_text()
        assert "&lt;script&gt;" in page
        assert "<script>" not in page

    def test_render_html_handles_empty_dashboard(self):
        page = render_html({
            "generated_at": "2025-12-10T00:00:00Z",
            "totals": {"transcripts": 0, "analyzed": 0, "reviewed": 0, "agents": 0},
            "sentiment": sentiment_breakdown([]),
            "topics": [],
            "agents": [],
            "rankings": [],
        })
        assert page.startswith("<!DOCTYPE html>")
