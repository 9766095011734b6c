"""
Professionalism Review Service

Samples analyzed calls per agent and asks the classifier to review the
agent's professionalism on each one. Results are stored in
professionalism_review and feed the agent rankings.

Sampling favours calls where professionalism matters most: up to half
of each agent's sample is negative-customer calls, up to 30% positive,
and the rest neutral. Calls too short to judge or already reviewed are
never sampled.

Author: CallSync Team
Date: 2026-01-12
"""

import argparse
import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from callsync.common.config import require_settings, settings
from callsync.common.db import init_engine
from callsync.common.records import TranscriptRecord
from callsync.services.classifier import OpenRouterClient, ProfessionalismClassifier
from callsync.services.dispatcher import AnalysisDispatcher, DispatchResult, log_progress
from callsync.services.store import TranscriptStore

logger = logging.getLogger("professionalism")

UNKNOWN_AGENT = "Unknown"

NEGATIVE_SHARE = 0.5
POSITIVE_SHARE = 0.3


def _newest_first(rows: List[dict]) -> List[dict]:
    return sorted(rows, key=lambda r: r.get("call_start") or datetime.min, reverse=True)


def sample_agent_calls(rows: List[dict], max_calls: int) -> List[str]:
    """
    Pick up to max_calls keys from one agent's analyzed calls.
    
    Example with max_calls=8 and plenty of each: 4 negative, 2 positive,
    2 neutral. Calls with another customer sentiment are not sampled.
    """
    by_sentiment: Dict[str, List[dict]] = defaultdict(list)
    for row in _newest_first(rows):
        by_sentiment[row.get("customer_sentiment")].append(row)

    negative = by_sentiment["negative"]
    positive = by_sentiment["positive"]
    neutral = by_sentiment["neutral"]

    neg_count = min(len(negative), int(max_calls * NEGATIVE_SHARE))
    pos_count = min(len(positive), int(max_calls * POSITIVE_SHARE))
    neu_count = min(len(neutral), max_calls - neg_count - pos_count)

    picked = negative[:neg_count] + positive[:pos_count] + neutral[:neu_count]
    return [row["vendor_call_key"] for row in picked]


def select_review_sample(
    rows: Iterable[dict],
    calls_per_agent: int,
    min_messages: int,
    reviewed: Set[str] = frozenset(),
    agents: Optional[Iterable[str]] = None,
) -> Dict[str, List[str]]:
    """
    Build the per-agent review sample from analysis rows.
    
    Args:
        rows: Output of TranscriptStore.analysis_rows()
        calls_per_agent: Maximum calls sampled per agent
        min_messages: Calls with fewer messages are skipped
        reviewed: Keys that already have a review
        agents: Restrict to these agent names
        
    Returns:
        dict: agent name -> sampled vendor call keys
    """
    wanted = set(agents) if agents else None
    grouped: Dict[str, List[dict]] = defaultdict(list)

    for row in rows:
        agent = row.get("agent_name") or UNKNOWN_AGENT
        if wanted is not None and agent not in wanted:
            continue
        if row["vendor_call_key"] in reviewed:
            continue
        if (row.get("message_count") or 0) < min_messages:
            continue
        grouped[agent].append(row)

    sample = {}
    for agent in sorted(grouped):
        keys = sample_agent_calls(grouped[agent], calls_per_agent)
        if keys:
            sample[agent] = keys
    return sample


async def review_agents(
    store: TranscriptStore,
    reviewer: ProfessionalismClassifier,
    calls_per_agent: int = settings.professionalism_calls_per_agent,
    agents: Optional[Iterable[str]] = None,
    dispatcher_options: Optional[Dict[str, Any]] = None,
) -> DispatchResult:
    """Sample, review and persist professionalism reviews."""
    rows = store.analysis_rows()
    reviewed = store.reviewed_keys(row["vendor_call_key"] for row in rows)
    sample = select_review_sample(
        rows, calls_per_agent, reviewer.min_messages, reviewed, agents
    )

    keys = [key for agent_keys in sample.values() for key in agent_keys]
    logger.info(f"[professionalism] Reviewing {len(keys)} calls across {len(sample)} agents")
    if not keys:
        return DispatchResult()

    def persist(transcript: TranscriptRecord, review) -> None:
        store.save_review(
            transcript.vendor_call_key, review, reviewer.model,
            agent_name=transcript.agent_name,
        )

    options = {"max_concurrent": 10}
    options.update(dispatcher_options or {})
    dispatcher = AnalysisDispatcher(reviewer.analyze, persist, **options)
    dispatcher.subscribe(log_progress(every=25))
    return await dispatcher.run(store.load_transcripts(keys))


async def run_review(calls_per_agent: int, agents: Optional[List[str]]) -> DispatchResult:
    init_engine()
    client = OpenRouterClient(settings.openrouter_api_key)
    try:
        return await review_agents(
            TranscriptStore(), ProfessionalismClassifier(client), calls_per_agent, agents
        )
    finally:
        await client.aclose()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Review agent professionalism on sampled calls")
    parser.add_argument(
        "--calls-per-agent", type=int, default=settings.professionalism_calls_per_agent,
        help="Calls sampled per agent",
    )
    parser.add_argument(
        "--agent", action="append", dest="agents",
        help="Only review this agent (repeatable)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    require_settings("database_url", "openrouter_api_key")

    result = asyncio.run(run_review(args.calls_per_agent, args.agents))

    print(f"[professionalism] Reviewed: {result.analyzed}/{result.total}")
    print(f"[professionalism] Failed:   {result.failed}")
    for failure in result.failures[:settings.error_summary_limit]:
        print(f"[professionalism]   - {failure.vendor_call_key}: {failure.reason}")


if __name__ == "__main__":
    main()
