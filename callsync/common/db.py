"""
Database Connection Management

This module provides database connection setup and session management
for the CallSync transcript pipeline using SQLAlchemy.

The module implements a singleton pattern for the database engine
and provides session factory functions.

Author: CallSync Team
Date: 2026-01-12
"""

from sqlalchemy import create_engine
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from callsync.common.config import settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.
    
    All model classes inherit from this base to provide
    consistent metadata and configuration.
    """
    pass


# Global database connection objects
_engine = None
_SessionLocal = None


def init_engine():
    """
    Initialize the database engine and session factory.
    
    Creates a singleton database engine with connection pooling
    and session factory configured for the application.
    
    Returns:
        sqlalchemy.Engine: The database engine instance
        
    Raises:
        RuntimeError: If DATABASE_URL is not configured
    """
    global _engine, _SessionLocal
    
    if _engine is None:
        if not settings.database_url:
            raise RuntimeError(
                "DATABASE_URL not configured. Please set the database_url "
                "in your .env file or environment variables."
            )
        
        options = {"pool_pre_ping": True, "echo": False}
        if not settings.database_url.startswith("sqlite"):
            options["pool_size"] = settings.db_pool_size
            options["max_overflow"] = settings.db_max_overflow

        _engine = create_engine(settings.database_url, **options)
        
        # Create session factory
        _SessionLocal = sessionmaker(
            bind=_engine, 
            expire_on_commit=False
        )
    
    return _engine


def get_session() -> Session:
    """
    Get a new database session.
    
    Creates a new database session for performing database operations.
    The session should be closed after use or used in a context manager.
    
    Returns:
        sqlalchemy.orm.Session: A new database session
        
    Example:
        with get_session() as session:
            transcript = session.query(Transcript).filter_by(
                vendor_call_key=key
            ).one_or_none()
    """
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal()


def upsert_statement(session: Session, table):
    """
    Build a dialect-specific INSERT that supports ON CONFLICT clauses.
    
    PostgreSQL runs in production, SQLite in local tooling and tests;
    both expose the same on_conflict_do_update/do_nothing API.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise RuntimeError(f"Upsert is not supported for dialect '{dialect}'")
