"""Alembic environment for the Stockbook schema.

``sqlalchemy.url`` in ``alembic.ini`` may be a literal URL or ``env://NAME``
to read the URL from an environment variable (``DB_URL`` when blank).
"""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from stockbook import models  # noqa: F401  registers the tables on the metadata
from stockbook.extensions import db

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

ENV_PREFIX = "env://"


def database_url() -> str:
    configured = (alembic_config.get_main_option("sqlalchemy.url") or "").strip()
    if configured and not configured.startswith(ENV_PREFIX):
        return configured
    variable = configured[len(ENV_PREFIX):] or "DB_URL"
    url = os.getenv(variable)
    if not url:
        raise RuntimeError(f"Set {variable} to the database URL before running migrations")
    return url


def _configure(**options) -> None:
    context.configure(
        target_metadata=db.Model.metadata,
        compare_type=True,
        **options,
    )


if context.is_offline_mode():
    _configure(
        url=database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()
else:
    engine = create_engine(database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()
