from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from creditledger.app.core.config import get_settings
from creditledger.app.db import models as _models  # noqa: F401  # ensure models are registered
from creditledger.app.db.base import Base

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
alembic_config = context.config

# Interpret the config file for Python logging.
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

target_metadata = Base.metadata


def _resolve_database_url() -> str:
    settings = get_settings()
    url = settings.database_url
    backend = url.split("://", 1)[0].split("+", 1)[0]
    if backend == "sqlite" and not settings.is_dev:
        raise RuntimeError(
            "SQLite migrations are only supported when APP_ENV=dev. "
            "Set CREDITLEDGER_DATABASE_URL to a PostgreSQL connection string."
        )
    if backend not in ("postgresql", "sqlite"):
        raise RuntimeError(
            f"Unsupported database backend: {backend}. "
            "Set CREDITLEDGER_DATABASE_URL to a PostgreSQL connection string."
        )
    return url


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = _resolve_database_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    configuration = alembic_config.get_section(alembic_config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = _resolve_database_url()

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
