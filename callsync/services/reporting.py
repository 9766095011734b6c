"""
Agent Rankings and Dashboard

Read-side aggregation over analyses and professionalism reviews. Nothing
here writes to the database; output goes to dashboard.json and a static
dashboard.html in the report directory.

Agent ranking:
- Mean of each 1-5 review score per agent
- Weighted composite: professionalism 3, empathy 2, active listening 2,
  clarity 1.5, de-escalation 1.5 (3 when never applicable), over 10
- Minus 0.02 per percentage point of calls where the agent caused
  customer frustration, clamped to [0, 5]
- Tier by inclusive lower bound: exemplary 4.2, professional 3.5,
  adequate 2.8, needs-coaching 2.0, critical below

Agents with calls but no reviews are listed with score 0.0 and tier
"unrated". Calls without an agent name are grouped under "Unknown".

Author: CallSync Team
Date: 2026-01-12
"""

import argparse
import html
import json
import logging
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from callsync.common.config import require_settings, settings
from callsync.common.db import init_engine
from callsync.services.store import TranscriptStore

logger = logging.getLogger("reporting")

UNKNOWN_AGENT = "Unknown"
UNRATED = "unrated"

SCORE_WEIGHTS = {
    "professionalism": 3.0,
    "empathy": 2.0,
    "active_listening": 2.0,
    "communication_clarity": 1.5,
    "de_escalation": 1.5,
}
WEIGHT_TOTAL = 10.0
DEFAULT_DE_ESCALATION = 3.0
FRUSTRATION_PENALTY_PER_PERCENT = 0.02
MAX_SCORE = 5.0

# Ordered highest first; a score equal to a threshold gets that tier
TIERS: Tuple[Tuple[float, str], ...] = (
    (4.2, "exemplary"),
    (3.5, "professional"),
    (2.8, "adequate"),
    (2.0, "needs-coaching"),
    (float("-inf"), "critical"),
)

SENTIMENTS = ("positive", "neutral", "negative")


def agent_key(name: Optional[str]) -> str:
    return name or UNKNOWN_AGENT


def mean(values: Iterable[Optional[float]]) -> Optional[float]:
    """Arithmetic mean of the non-null values, None when there are none."""
    values = [v for v in values if v is not None]
    if not values:
        return None
    return sum(values) / len(values)


def tier_for_score(score: float) -> str:
    for threshold, tier in TIERS:
        if score >= threshold:
            return tier
    return TIERS[-1][1]


def composite_score(scores: Dict[str, Optional[float]], frustration_rate: float) -> float:
    """
    Weighted composite of mean review scores.
    
    Args:
        scores: Component name -> mean score (None when never scored)
        frustration_rate: Percent (0-100) of calls where the agent caused frustration
    """
    total = 0.0
    for name, weight in SCORE_WEIGHTS.items():
        value = scores.get(name)
        if value is None:
            value = DEFAULT_DE_ESCALATION if name == "de_escalation" else 0.0
        total += value * weight

    # Rounded so float drift never drops a score below its tier threshold
    score = round(total / WEIGHT_TOTAL - frustration_rate * FRUSTRATION_PENALTY_PER_PERCENT, 6)
    return max(0.0, min(MAX_SCORE, score))


def top_counts(lists: Iterable[Sequence[str]], n: int = 5) -> List[Tuple[str, int]]:
    """Most frequent entries, ties in first-seen order."""
    counter: Counter = Counter()
    for items in lists:
        counter.update(item for item in items or [] if item)
    return counter.most_common(n)


@dataclass
class AgentRanking:
    agent_name: str
    total_calls: int = 0
    reviewed_calls: int = 0
    scores: Dict[str, Optional[float]] = field(default_factory=dict)
    frustration_caused: int = 0
    frustration_rate: float = 0.0
    overall_score: float = 0.0
    tier: str = UNRATED
    common_issues: List[Tuple[str, int]] = field(default_factory=list)
    common_strengths: List[Tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["scores"] = {
            name: (round(value, 2) if value is not None else None)
            for name, value in self.scores.items()
        }
        data["frustration_rate"] = round(self.frustration_rate, 1)
        data["overall_score"] = round(self.overall_score, 2)
        data["common_issues"] = [{"issue": i, "count": c} for i, c in self.common_issues]
        data["common_strengths"] = [{"strength": s, "count": c} for s, c in self.common_strengths]
        return data


def rank_agent(name: str, reviews: List[dict], total_calls: int, top_n: int = 5) -> AgentRanking:
    """Aggregate one agent's reviews into an AgentRanking."""
    ranking = AgentRanking(agent_name=name, total_calls=total_calls, reviewed_calls=len(reviews))
    if not reviews:
        return ranking

    ranking.scores = {
        component: mean(review.get(component) for review in reviews)
        for component in SCORE_WEIGHTS
    }
    ranking.frustration_caused = sum(1 for review in reviews if review.get("caused_frustration"))
    ranking.frustration_rate = ranking.frustration_caused / len(reviews) * 100
    ranking.overall_score = composite_score(ranking.scores, ranking.frustration_rate)
    ranking.tier = tier_for_score(ranking.overall_score)
    ranking.common_issues = top_counts((r.get("agent_issues") for r in reviews), top_n)
    ranking.common_strengths = top_counts((r.get("agent_strengths") for r in reviews), top_n)
    return ranking


def rank_agents(
    reviews: Iterable[dict],
    call_counts: Optional[Dict[Optional[str], int]] = None,
    top_n: int = 5,
) -> List[AgentRanking]:
    """
    Rank every agent that has calls or reviews.
    
    Returns:
        Rankings by overall score, highest first; unrated agents last
    """
    by_agent: Dict[str, List[dict]] = defaultdict(list)
    for review in reviews:
        by_agent[agent_key(review.get("agent_name"))].append(review)

    totals: Dict[str, int] = defaultdict(int)
    for name, count in (call_counts or {}).items():
        totals[agent_key(name)] += count

    rankings = [
        rank_agent(name, by_agent.get(name, []), totals.get(name, len(by_agent.get(name, []))), top_n)
        for name in set(by_agent) | set(totals)
    ]
    rankings.sort(key=lambda r: (r.tier == UNRATED, -r.overall_score, r.agent_name))
    return rankings


def tier_distribution(rankings: Iterable[AgentRanking]) -> Dict[str, int]:
    distribution = {tier: 0 for _, tier in TIERS}
    distribution[UNRATED] = 0
    for ranking in rankings:
        distribution[ranking.tier] += 1
    return distribution


def sentiment_breakdown(analyses: List[dict]) -> Dict[str, Dict[str, int]]:
    """Counts of agent and customer sentiment labels."""
    breakdown = {
        "agent": {label: 0 for label in SENTIMENTS},
        "customer": {label: 0 for label in SENTIMENTS},
    }
    for row in analyses:
        for side in ("agent", "customer"):
            label = row.get(f"{side}_sentiment")
            if label in breakdown[side]:
                breakdown[side][label] += 1
    return breakdown


def topic_breakdown(analyses: List[dict], top_subcategories: int = 5) -> List[Dict[str, Any]]:
    """Calls per discovered topic, most common first."""
    total = len(analyses)
    topics: Dict[str, List[dict]] = defaultdict(list)
    for row in analyses:
        topics[row.get("ai_discovered_topic") or "Uncategorized"].append(row)

    result = []
    for topic, rows in topics.items():
        subcategories = Counter(r.get("ai_discovered_subcategory") for r in rows if r.get("ai_discovered_subcategory"))
        result.append({
            "topic": topic,
            "count": len(rows),
            "percent": round(len(rows) / total * 100, 1) if total else 0.0,
            "avg_confidence": _round(mean(r.get("topic_confidence") for r in rows), 2),
            "negative_customers": sum(1 for r in rows if r.get("customer_sentiment") == "negative"),
            "subcategories": [{"name": n, "count": c} for n, c in subcategories.most_common(top_subcategories)],
        })
    result.sort(key=lambda t: -t["count"])
    return result


def agent_sentiment_stats(analyses: List[dict]) -> List[Dict[str, Any]]:
    """Per-agent call counts and average sentiment scores."""
    by_agent: Dict[str, List[dict]] = defaultdict(list)
    for row in analyses:
        by_agent[agent_key(row.get("agent_name"))].append(row)

    stats = []
    for name, rows in by_agent.items():
        customer = Counter(r.get("customer_sentiment") for r in rows)
        stats.append({
            "agent_name": name,
            "analyzed_calls": len(rows),
            "avg_agent_sentiment": _round(mean(r.get("agent_sentiment_score") for r in rows), 3),
            "avg_customer_sentiment": _round(mean(r.get("customer_sentiment_score") for r in rows), 3),
            "avg_duration_seconds": _round(mean(r.get("duration_seconds") for r in rows), 0),
            "customer_sentiment": {label: customer.get(label, 0) for label in SENTIMENTS},
            "top_topics": [
                {"topic": t, "count": c}
                for t, c in Counter(r.get("ai_discovered_topic") for r in rows if r.get("ai_discovered_topic")).most_common(3)
            ],
        })
    stats.sort(key=lambda s: (-s["analyzed_calls"], s["agent_name"]))
    return stats


def _round(value: Optional[float], digits: int) -> Optional[float]:
    return round(value, digits) if value is not None else None


def build_dashboard(store: TranscriptStore, top_n: int = 5) -> Dict[str, Any]:
    """Collect every report section from the store."""
    analyses = store.analysis_rows()
    reviews = store.review_rows()
    call_counts = store.call_counts_by_agent()
    rankings = rank_agents(reviews, call_counts, top_n)

    return {
        "generated_at": datetime.utcnow().isoformat(timespec="seconds") + "Z",
        "totals": {
            "transcripts": sum(call_counts.values()),
            "analyzed": len(analyses),
            "reviewed": len(reviews),
            "agents": len(rankings),
        },
        "sentiment": sentiment_breakdown(analyses),
        "topics": topic_breakdown(analyses),
        "agents": agent_sentiment_stats(analyses),
        "rankings": [ranking.to_dict() for ranking in rankings],
        "tier_distribution": tier_distribution(rankings),
    }


def _table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    head = "".join(f"<th>{html.escape(str(h))}</th>" for h in headers)
    body = "".join(
        "<tr>" + "".join(
            f"<td>{html.escape('' if cell is None else str(cell))}</td>" for cell in row
        ) + "</tr>"
        for row in rows
    )
    return f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"


def render_html(dashboard: Dict[str, Any]) -> str:
    """Static HTML view of a dashboard dict; all values are escaped."""
    totals = dashboard["totals"]
    sentiment = dashboard["sentiment"]

    sections = [
        "<h1>Call Transcript Dashboard</h1>",
        f"<p>Generated {html.escape(dashboard['generated_at'])}</p>",
        _table(
            ("Transcripts", "Analyzed", "Reviewed", "Agents"),
            [(totals["transcripts"], totals["analyzed"], totals["reviewed"], totals["agents"])],
        ),
        "<h2>Sentiment</h2>",
        _table(
            ("Side",) + SENTIMENTS,
            [(side,) + tuple(sentiment[side][label] for label in SENTIMENTS) for side in ("agent", "customer")],
        ),
        "<h2>Topics</h2>",
        _table(
            ("Topic", "Calls", "%", "Avg confidence", "Negative customers"),
            [
                (t["topic"], t["count"], t["percent"], t["avg_confidence"], t["negative_customers"])
                for t in dashboard["topics"]
            ],
        ),
        "<h2>Agent Rankings</h2>",
        _table(
            ("#", "Agent", "Score", "Tier", "Reviewed", "Calls", "Frustration %", "Top issue", "Top strength"),
            [
                (
                    idx, r["agent_name"], r["overall_score"], r["tier"], r["reviewed_calls"],
                    r["total_calls"], r["frustration_rate"],
                    r["common_issues"][0]["issue"] if r["common_issues"] else "",
                    r["common_strengths"][0]["strength"] if r["common_strengths"] else "",
                )
                for idx, r in enumerate(dashboard["rankings"], start=1)
            ],
        ),
        "<h2>Agent Sentiment</h2>",
        _table(
            ("Agent", "Analyzed", "Avg agent", "Avg customer", "Negative customers"),
            [
                (
                    a["agent_name"], a["analyzed_calls"], a["avg_agent_sentiment"],
                    a["avg_customer_sentiment"], a["customer_sentiment"]["negative"],
                )
                for a in dashboard["agents"]
            ],
        ),
    ]

    style = (
        "body{font-family:sans-serif;margin:2em}"
        "table{border-collapse:collapse;margin-bottom:1.5em}"
        "th,td{border:1px solid #ccc;padding:4px 8px;text-align:left}"
        "th{background:#f0f0f0}"
    )
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>Call Transcript Dashboard</title><style>{style}</style></head>"
        f"<body>{''.join(sections)}</body></html>"
    )


def write_dashboard(dashboard: Dict[str, Any], output_dir: Path) -> Tuple[Path, Path]:
    """Write dashboard.json and dashboard.html, returning both paths."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    json_path = output_dir / "dashboard.json"
    html_path = output_dir / "dashboard.html"
    json_path.write_text(json.dumps(dashboard, indent=2, default=str), encoding="utf-8")
    html_path.write_text(render_html(dashboard), encoding="utf-8")

    logger.info(f"[report] Wrote {json_path} and {html_path}")
    return json_path, html_path


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Build agent rankings and the dashboard")
    parser.add_argument("-o", "--output-dir", type=Path, default=Path(settings.report_output_dir))
    parser.add_argument("--top", type=int, default=5, help="Issues/strengths listed per agent")
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    require_settings("database_url")

    init_engine()
    dashboard = build_dashboard(TranscriptStore(), args.top)
    json_path, html_path = write_dashboard(dashboard, args.output_dir)

    print(f"[report] {dashboard['totals']['agents']} agents ranked")
    for ranking in dashboard["rankings"][:10]:
        print(f"[report]   {ranking['agent_name']}: {ranking['overall_score']:.2f} ({ranking['tier']})")
    print(f"[report] JSON: {json_path}")
    print(f"[report] HTML: {html_path}")


if __name__ == "__main__":
    main()
