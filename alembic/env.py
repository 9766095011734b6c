"""
Alembic Migration Environment Configuration

Runs migrations for the CallSync transcript database. The connection URL
comes from DATABASE_URL via the application settings, and the model
metadata is registered so autogenerate sees every table.

Author: CallSync Team
Date: 2026-01-12
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from callsync.common.config import settings
from callsync.common.db import Base
from callsync.common import models  # noqa: F401 - registers transcript tables


config = context.config

# Runtime database URL wins over alembic.ini
if settings.database_url:
    config.set_main_option('sqlalchemy.url', settings.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit migration SQL for the configured URL without connecting."""
    url = config.get_main_option('sqlalchemy.url')
    
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix='sqlalchemy.',
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
