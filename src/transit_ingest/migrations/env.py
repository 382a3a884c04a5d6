from logging.config import fileConfig

from alembic import context

from transit_ingest.database.database_utils import create_transit_engine
from transit_ingest.database.transit_schema import TransitSqlBase
from transit_ingest.runtime_utils.configuration import IngestConfig

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# Interpret the config file for Python logging.
# This line sets up loggers basically. Skipped when called from the pipeline,
# which has already configured logging.
if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = TransitSqlBase.metadata


def get_database_url() -> str:
    """url set by get_alembic_config, or DATABASE_URL when run from the cmd line"""
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    return IngestConfig.from_env().database_url


def run_migrations_online() -> None:
    """Run migrations in 'online' mode.

    In this scenario we need to create an Engine
    and associate a connection with the context.

    """
    connectable = create_transit_engine(get_database_url())

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            # sqlite can only alter tables by copying them
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()

    connectable.dispose()


if context.is_offline_mode():
    raise NotImplementedError("Alembic offline migration not implemented.")
else:
    run_migrations_online()
