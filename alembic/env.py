from logging.config import fileConfig
from sqlalchemy import create_engine, pool
from alembic import context
from vetchat.database import Base
from vetchat.config import get_settings
from vetchat.models import Chat, Message, Report, StoredFile  # noqa: F401 - load models

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
database_url = get_settings().database_url
target_metadata = Base.metadata

# SQLite cannot ALTER most columns in place; batch mode rebuilds the table instead
render_as_batch = database_url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit SQL for the configured database without connecting."""
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=render_as_batch,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a live connection (an injected one when called from code)."""
    connectable = config.attributes.get("connection", None)
    if connectable is None:
        connectable = create_engine(database_url, poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=render_as_batch,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
