"""Shared fixtures: an in-memory SQLite store and transcript builders."""
import json
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from callsync.common import models  # noqa: F401 - registers tables
from callsync.common.db import Base
from callsync.common.records import AGENT, CUSTOMER, Message, TranscriptRecord
from callsync.common.schemas import CallAnalysis
from callsync.services.store import TranscriptStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return TranscriptStore(sessionmaker(bind=engine, expire_on_commit=False))


def make_transcript(key="CALL-1", agent_name="Alice", call_start=None, messages=None, **fields):
    if messages is None:
        messages = [
            Message(CUSTOMER, "Hi, my payment did not go through", 1.0),
            Message(AGENT, "I'm happy to help with that", 2.0),
            Message(CUSTOMER, "Thanks", 3.0),
            Message(AGENT, "You're welcome", 4.0),
        ]
    return TranscriptRecord(
        vendor_call_key=key,
        call_start=call_start or datetime(2025, 12, 5, 14, 30),
        agent_name=agent_name,
        messages=messages,
        **fields,
    )


def make_analysis(customer="neutral", topic="Payment Processing", **overrides):
    values = {
        "agent_sentiment": "positive",
        "agent_sentiment_score": 0.8,
        "customer_sentiment": customer,
        "customer_sentiment_score": 0.5,
        "ai_discovered_topic": topic,
        "topic_confidence": 0.9,
    }
    values.update(overrides)
    return CallAnalysis(**values)


def conversation_json(*entries):
    """Build a raw Conversation blob from (role, text, client_ts) tuples."""
    return json.dumps({
        "conversationEntries": [
            {"sender": {"role": role}, "messageText": text, "clientTimestamp": ts}
            for role, text, ts in entries
        ]
    })


def raw_row(key="CALL-1", start="2025-12-05T14:30:00Z", **extra):
    row = {
        "VendorCallKey": key,
        "CallStartDateTime": start,
        "CallEndDateTime": "2025-12-05T14:40:00Z",
        "CallDurationInSeconds": 600,
        "CallDispositionServicing": "Payment Inquiry",
        "Department": "Servicing",
        "VoiceCallStatus": "Completed",
        "Name": "Alice",
        "Conversation": conversation_json(
            ("EndUser", "Hi, my payment did not go through", 1000),
            ("Agent", "I&#39;m happy to help", 2000),
        ),
    }
    row.update(extra)
    return row
