"""Alembic environment configuration."""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from mixer_rental.config import settings

# Import all models so Alembic can detect them
from mixer_rental.database.base import Base
from mixer_rental.machines.models import Machine  # noqa: F401
from mixer_rental.documents.models import MachineDocument  # noqa: F401
from mixer_rental.notifications.models import (  # noqa: F401
    NotificationDefault,
    NotificationDefaultDay,
    NotificationLog,
    NotificationRule,
)
from mixer_rental.email_jobs.models import EmailJob  # noqa: F401
from mixer_rental.audit.models import AuditLog  # noqa: F401

config = context.config
# Programmatic runs from main.py pass the URL in; the CLI falls back to settings
if not config.get_main_option("sqlalchemy.url"):
    config.set_main_option("sqlalchemy.url", settings.effective_database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(url=url, target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
