"""Alembic environment bound to the application settings and metadata"""

from alembic import context
from sqlalchemy import engine_from_config, pool

from rbi_access.config import settings
from rbi_access.database import Base
import rbi_access.models  # noqa: F401  registers the tables

config = context.config
# Migrations run with the elevated credentials that own the tables
config.set_main_option("sqlalchemy.url", settings.get_privileged_database_url())

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
