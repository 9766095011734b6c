"""
Database Initialization Script

This module provides table creation for the CallSync transcript pipeline.
It creates all tables defined in the models module. Production databases
should be migrated with Alembic instead.

Usage:
    python -m callsync.common.init_db

Author: CallSync Team
Date: 2026-01-12
"""

import logging

from callsync.common.db import Base, init_engine
from callsync.common import models  # noqa: F401 - Import needed to register models

logger = logging.getLogger("init_db")


def create_tables():
    """
    Create all database tables.
    
    Creates all tables defined in the models module using
    SQLAlchemy's metadata.create_all() method.
    """
    engine = init_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    create_tables()
