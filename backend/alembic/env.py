from logging.config import fileConfig

from alembic import context
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect, text

from apparel_analytics import models  # noqa: F401
from apparel_analytics.config import settings
from apparel_analytics.database import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Revision ids here are longer than Alembic's default VARCHAR(32).
_VERSION_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS alembic_version (
    version_num VARCHAR(128) NOT NULL,
    CONSTRAINT alembic_version_pkc PRIMARY KEY (version_num)
)
"""


def _ensure_version_table(connection) -> None:
    connection.execute(text(_VERSION_TABLE_DDL))
    connection.commit()


def _stamp_sqlite_created_by_metadata(connection) -> None:
    """Local SQLite files built with ``Base.metadata.create_all`` are stamped at head."""

    if connection.dialect.name != "sqlite":
        return
    if connection.execute(text("select count(*) from alembic_version")).scalar():
        return
    if not inspect(connection).has_table("daily_kpi"):
        return
    head = ScriptDirectory.from_config(config).get_current_head()
    if head:
        connection.execute(text("insert into alembic_version(version_num) values (:v)"), {"v": head})
        connection.commit()


def _migrate(connection) -> None:
    _ensure_version_table(connection)
    _stamp_sqlite_created_by_metadata(connection)
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    context.configure(
        url=settings.database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    # main.upgrade_database() hands over the connection holding the migration lock.
    shared = config.attributes.get("connection")
    if shared is not None:
        _migrate(shared)
        return

    with create_engine(settings.database_url, future=True).connect() as connection:
        _migrate(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
