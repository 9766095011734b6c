"""
Classifier Response Schemas

Strict Pydantic models for the JSON objects the classifier must return.
A response only becomes an Analysis row if it validates here: missing
fields, unknown sentiment labels and out-of-range scores are rejected.

The classifier speaks camelCase (agentSentimentScore); the database and
Python code use snake_case. Both spellings are accepted on input.

Author: CallSync Team
Date: 2026-01-12
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


Sentiment = Literal["positive", "neutral", "negative"]


class _ClassifierModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class CallAnalysis(_ClassifierModel):
    """Sentiment and topic analysis of one call."""

    agent_sentiment: Sentiment
    agent_sentiment_score: float = Field(ge=0.0, le=1.0)
    agent_sentiment_reason: str = ""

    customer_sentiment: Sentiment
    customer_sentiment_score: float = Field(ge=0.0, le=1.0)
    customer_sentiment_reason: str = ""

    ai_discovered_topic: str = Field(min_length=1)
    ai_discovered_subcategory: str = ""
    topic_confidence: float = Field(ge=0.0, le=1.0)

    key_issues: List[str] = Field(default_factory=list)
    resolution: str = ""
    tags: List[str] = Field(default_factory=list)

    @field_validator("agent_sentiment", "customer_sentiment", mode="before")
    @classmethod
    def _normalize_label(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator(
        "agent_sentiment_reason", "customer_sentiment_reason",
        "ai_discovered_subcategory", "resolution", mode="before",
    )
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class ProfessionalismAssessment(_ClassifierModel):
    """Review of the agent's behaviour in one call (1-5 scales)."""

    agent_professionalism: float = Field(ge=1.0, le=5.0)
    agent_caused_frustration: bool
    de_escalation_skill: Optional[float] = Field(default=None, ge=1.0, le=5.0)
    communication_clarity: float = Field(ge=1.0, le=5.0)
    active_listening: float = Field(ge=1.0, le=5.0)
    empathy: float = Field(ge=1.0, le=5.0)
    customer_start_mood: str = ""
    customer_end_mood: str = ""
    agent_issues: List[str] = Field(default_factory=list)
    agent_strengths: List[str] = Field(default_factory=list)
    summary: str = ""

    @field_validator("de_escalation_skill", mode="before")
    @classmethod
    def _not_applicable(cls, value):
        # The model answers "N/A" when the customer was never upset
        if value is None or (isinstance(value, str) and value.strip().upper() in ("N/A", "NA", "")):
            return None
        return value
