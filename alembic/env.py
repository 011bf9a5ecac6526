"""Alembic environment: runs migrations against leadhub's DATABASE_URL."""
from logging.config import fileConfig

from alembic import context

from leadhub.database import Base, engine
import leadhub.models.organization  # noqa: F401
import leadhub.models.deal  # noqa: F401
import leadhub.models.lead_score  # noqa: F401
import leadhub.models.lead_webhook  # noqa: F401
import leadhub.models.assignment_event  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=str(engine.url),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={'paramstyle': 'named'},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
