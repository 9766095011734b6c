"""
Keyword Sentiment Classifier

Fallback analysis used when no LLM classifier is configured. It produces
the same CallAnalysis shape as TranscriptClassifier from simple keyword
counts, so either can be handed to the AnalysisDispatcher.

Author: CallSync Team
Date: 2026-01-12
"""

import re
from typing import Dict, List, Tuple

from callsync.common.records import AGENT, CUSTOMER, TranscriptRecord
from callsync.common.schemas import CallAnalysis
from callsync.services.classifier import PermanentAnalysisError


KEYWORD_MODEL = "keyword-heuristic"

POSITIVE_KEYWORDS = (
    "thank", "thanks", "appreciate", "helpful", "great", "excellent",
    "wonderful", "perfect", "good", "happy", "satisfied", "pleased", "awesome",
)

NEGATIVE_KEYWORDS = (
    "frustrated", "angry", "upset", "terrible", "awful", "horrible", "worst",
    "unacceptable", "ridiculous", "disappointed", "dissatisfied", "complaint",
    "furious", "outraged",
)

NEGATIVE_WEIGHT = 1.5
LABEL_THRESHOLD = 0.2

# Topic -> keywords, first category with the most hits wins
TOPIC_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "Payment Issues": ("payment", "pay", "autopay", "ach", "paying", "bill"),
    "Account Access": ("login", "password", "access", "locked out", "account"),
    "Loan Transfer": ("transfer", "servicer", "sold my loan", "boarding", "new servicer"),
    "Document Requests": ("document", "statement", "payoff", "letter", "copy", "paperwork"),
    "Escrow": ("escrow", "tax", "insurance", "impound"),
    "Escalation": ("supervisor", "manager", "complaint", "escalate", "lawyer", "attorney", "legal"),
    "Loan Information": ("loan info", "account information", "balance", "interest rate", "loan details"),
    "Loan Modifications": ("modification", "loan change", "refinance", "forbearance", "hardship"),
}

# Short keywords only count as whole words ("ach" must not hit "each")
WHOLE_WORD_MAX_LENGTH = 3


def _keyword_pattern(keyword: str) -> re.Pattern:
    if len(keyword) <= WHOLE_WORD_MAX_LENGTH:
        return re.compile(r"\b" + re.escape(keyword) + r"\b")
    return re.compile(re.escape(keyword))


TOPIC_PATTERNS = {
    topic: [(keyword, _keyword_pattern(keyword)) for keyword in keywords]
    for topic, keywords in TOPIC_KEYWORDS.items()
}


def score_sentiment(text: str) -> Tuple[str, float]:
    """
    Keyword sentiment of a text block.
    
    Returns:
        (label, score) with score in [-1, 1]; label is positive,
        negative, mixed or neutral
    """
    lower = text.lower()
    positive = sum(len(re.findall(re.escape(k), lower)) for k in POSITIVE_KEYWORDS)
    negative = sum(len(re.findall(re.escape(k), lower)) for k in NEGATIVE_KEYWORDS) * NEGATIVE_WEIGHT

    total_words = len(text.split())
    density = (positive - negative) / max(total_words / 50, 1)
    score = max(-1.0, min(1.0, density))

    if score > LABEL_THRESHOLD:
        label = "positive"
    elif score < -LABEL_THRESHOLD:
        label = "negative"
    elif positive > 0 and negative > 0:
        label = "mixed"
    else:
        label = "neutral"
    return label, score


def discover_topic(text: str) -> Tuple[str, float, List[str]]:
    """Best matching topic, a confidence in [0, 1] and the matched keywords."""
    lower = text.lower()
    best_topic, best_hits, best_matched = "General Inquiry", 0, []
    for topic, patterns in TOPIC_PATTERNS.items():
        matched = [keyword for keyword, pattern in patterns if pattern.search(lower)]
        if len(matched) > best_hits:
            best_topic, best_hits, best_matched = topic, len(matched), matched
    confidence = min(1.0, 0.3 + 0.15 * best_hits) if best_hits else 0.2
    return best_topic, confidence, best_matched


class KeywordClassifier:
    """Heuristic stand-in for the LLM classifier."""

    model = KEYWORD_MODEL

    def classify(self, transcript: TranscriptRecord) -> CallAnalysis:
        messages = transcript.messages or []
        if not messages:
            raise PermanentAnalysisError("No conversation messages")

        agent_text = " ".join(m.text for m in messages if m.speaker == AGENT)
        customer_text = " ".join(m.text for m in messages if m.speaker == CUSTOMER)

        agent_label, agent_score = score_sentiment(agent_text)
        customer_label, customer_score = score_sentiment(customer_text)
        topic, confidence, matched = discover_topic(agent_text + " " + customer_text)

        return CallAnalysis(
            agent_sentiment="neutral" if agent_label == "mixed" else agent_label,
            agent_sentiment_score=round((agent_score + 1) / 2, 3),
            agent_sentiment_reason=f"Keyword heuristic ({agent_label})",
            customer_sentiment="neutral" if customer_label == "mixed" else customer_label,
            customer_sentiment_score=round((customer_score + 1) / 2, 3),
            customer_sentiment_reason=f"Keyword heuristic ({customer_label})",
            ai_discovered_topic=topic,
            ai_discovered_subcategory=transcript.disposition or "",
            topic_confidence=confidence,
            key_issues=[],
            resolution="",
            tags=matched,
        )

    async def analyze(self, transcript: TranscriptRecord) -> CallAnalysis:
        return self.classify(transcript)
