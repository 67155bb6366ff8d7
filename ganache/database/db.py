import logging
import os
from contextlib import contextmanager
from typing import Iterator

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ganache.assets.database.models import Base

ROOT_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def get_alembic_config(database_url: str) -> Config:
    config_path = os.path.join(ROOT_PATH, "alembic.ini")
    scripts_path = os.path.join(ROOT_PATH, "alembic_db")

    config = Config(config_path)
    config.set_main_option("script_location", scripts_path)
    config.set_main_option("sqlalchemy.url", database_url)
    return config


def _on_sqlite_connect(dbapi_connection, _connection_record) -> None:
    # pysqlite defers BEGIN until the first DML statement, which breaks
    # SAVEPOINT; hand transaction control to the "begin" listener instead.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _on_sqlite_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


def configure_sqlite_engine(engine: Engine) -> None:
    """Enable foreign keys and explicit BEGIN on every new SQLite connection."""
    event.listen(engine, "connect", _on_sqlite_connect)
    event.listen(engine, "begin", _on_sqlite_begin)


class Database:
    """Owns the engine and hands out sessions.

    Constructed once by the entry point (or a test fixture) and passed to
    every component that needs persistence.
    """

    def __init__(self, database_url: str | None = None, engine: Engine | None = None):
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = create_engine(database_url)
            if engine.dialect.name == "sqlite":
                configure_sqlite_engine(engine)
        self.engine = engine
        self.database_url = database_url or engine.url.render_as_string(hide_password=False)
        self._session_factory = sessionmaker(bind=engine)

    @contextmanager
    def create_session(self) -> Iterator[Session]:
        with self._session_factory() as session:
            yield session

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def upgrade(self) -> None:
        """Bring the schema to the alembic head revision if it is behind."""
        config = get_alembic_config(self.database_url)
        script = ScriptDirectory.from_config(config)
        target_rev = script.get_current_head()

        with self.engine.connect() as conn:
            current_rev = MigrationContext.configure(conn).get_current_revision()

        if current_rev == target_rev:
            logging.debug("Database schema is up to date at %s", current_rev)
            return

        logging.info("Upgrading database schema from %s to %s", current_rev, target_rev)
        command.upgrade(config, target_rev)

    def dispose(self) -> None:
        self.engine.dispose()
