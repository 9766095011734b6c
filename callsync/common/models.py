"""
SQLAlchemy Database Models

This module defines the database schema for the CallSync transcript
pipeline. It includes models for call transcripts, AI analyses,
professionalism reviews and sync run audit records.

Author: CallSync Team
Date: 2026-01-12
"""

from sqlalchemy import (
    BigInteger, Boolean, Column, Date, DateTime, Float, ForeignKey,
    Integer, JSON, String, Text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from callsync.common.db import Base


# SQLite only autoincrements INTEGER primary keys
_BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class Transcript(Base):
    """
    Represents one phone call imported from the vendor source.
    
    vendor_call_key is the idempotence key: every import of the same
    call updates this row instead of creating a new one.
    """
    __tablename__ = 'transcript'
    
    # Primary fields
    id = Column(_BigIntPK, primary_key=True, autoincrement=True)
    vendor_call_key = Column(String(64), unique=True, nullable=False)
    call_start = Column(DateTime, index=True)
    call_end = Column(DateTime)
    duration_seconds = Column(Integer)
    
    # Call metadata
    disposition = Column(Text, comment='Outcome code assigned by the source system')
    department = Column(String(128))
    status = Column(String(64))
    number_of_holds = Column(Integer)
    hold_duration = Column(Integer, comment='Customer hold duration in seconds')
    
    # Agent metadata
    agent_name = Column(Text, index=True)
    agent_role = Column(Text)
    agent_profile = Column(Text)
    agent_email = Column(Text)
    
    # Ordered list of {speaker, text, timestamp}
    messages = Column(JSON(none_as_null=True))
    
    # Audit fields
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(
        DateTime, 
        server_default=func.now(), 
        onupdate=func.now()
    )
    
    # Relationships
    analysis = relationship(
        'TranscriptAnalysis', 
        uselist=False, 
        back_populates='transcript'
    )
    professionalism_review = relationship(
        'ProfessionalismReview',
        uselist=False,
        back_populates='transcript'
    )


class TranscriptAnalysis(Base):
    """
    AI sentiment/topic analysis of a transcript.
    
    At most one row per call; its presence means the classifier
    must not be run again for that call.
    """
    __tablename__ = 'transcript_analysis'
    
    # Primary fields
    id = Column(_BigIntPK, primary_key=True, autoincrement=True)
    vendor_call_key = Column(
        String(64), 
        ForeignKey('transcript.vendor_call_key', ondelete='CASCADE'),
        unique=True,
        nullable=False
    )
    agent_name = Column(Text, index=True)
    
    # Sentiment
    agent_sentiment = Column(String(16), nullable=False)
    agent_sentiment_score = Column(Float, nullable=False)
    agent_sentiment_reason = Column(Text)
    customer_sentiment = Column(String(16), nullable=False)
    customer_sentiment_score = Column(Float, nullable=False)
    customer_sentiment_reason = Column(Text)
    
    # Topic discovery
    ai_discovered_topic = Column(Text, index=True)
    ai_discovered_subcategory = Column(Text)
    topic_confidence = Column(Float)
    key_issues = Column(JSON)
    resolution = Column(Text)
    tags = Column(JSON)
    
    # Provenance
    model = Column(String(64), nullable=False, comment='Classifier that produced this row')
    analyzed_at = Column(DateTime, server_default=func.now())
    updated_at = Column(
        DateTime, 
        server_default=func.now(), 
        onupdate=func.now()
    )
    
    # Relationships
    transcript = relationship('Transcript', back_populates='analysis')


class ProfessionalismReview(Base):
    """
    Per-call review of the agent's professionalism.
    
    Scores are on a 1-5 scale; de_escalation is NULL when the
    customer was never upset.
    """
    __tablename__ = 'professionalism_review'
    
    # Primary fields
    id = Column(_BigIntPK, primary_key=True, autoincrement=True)
    vendor_call_key = Column(
        String(64),
        ForeignKey('transcript.vendor_call_key', ondelete='CASCADE'),
        unique=True,
        nullable=False
    )
    agent_name = Column(Text, index=True)
    
    # Scores
    professionalism = Column(Float, nullable=False)
    communication_clarity = Column(Float)
    active_listening = Column(Float)
    empathy = Column(Float)
    de_escalation = Column(Float)
    caused_frustration = Column(Boolean, nullable=False, default=False)
    
    # Observations
    customer_start_mood = Column(String(32))
    customer_end_mood = Column(String(32))
    agent_issues = Column(JSON)
    agent_strengths = Column(JSON)
    summary = Column(Text)
    
    # Provenance
    model = Column(String(64), nullable=False)
    reviewed_at = Column(DateTime, server_default=func.now())
    
    # Relationships
    transcript = relationship('Transcript', back_populates='professionalism_review')


class SyncRun(Base):
    """
    Audit record of one delta sync run.
    
    Stores the fetched window and the run summary so operators can
    see what every scheduled run did.
    """
    __tablename__ = 'sync_run'
    
    # Primary fields
    id = Column(Integer, primary_key=True)
    
    # Window
    window_start = Column(
        Date,
        nullable=False,
        comment='First call_start date requested from the source'
    )
    window_end = Column(
        Date,
        nullable=False,
        comment='Last call_start date requested from the source'
    )
    method = Column(String(16), nullable=False, comment='full_export or query')
    
    # Summary counts
    fetched = Column(Integer, nullable=False, default=0)
    imported = Column(Integer, nullable=False, default=0)
    analyzed = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    errors = Column(Integer, nullable=False, default=0)
    error_messages = Column(JSON)
    
    # Timing
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, server_default=func.now())
