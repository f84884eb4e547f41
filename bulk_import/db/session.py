import logging
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError

from bulk_import.core.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None


def _report_connection_failure(database_url: str, exc: Exception) -> None:
    """Log where the engine was pointed when the first connection failed."""
    url = make_url(database_url)
    logger.warning(
        "Could not connect to database %s (host=%s, database=%s): %s. "
        "The application will start but commits will fail until the connection succeeds.",
        url.get_backend_name(),
        url.host or "local",
        url.database,
        exc,
    )


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let SQLAlchemy issue BEGIN itself so SAVEPOINTs nest inside the
    transaction; pysqlite otherwise defers BEGIN and releases them early.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        # Validation and commit run on worker threads
        connect_args["check_same_thread"] = False
    engine = create_engine(database_url, connect_args=connect_args)
    if is_sqlite:
        _enable_sqlite_savepoints(engine)
    return engine


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url)
        try:
            # Test connection eagerly so failures surface immediately.
            with _engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            _report_connection_failure(settings.database_url, exc)
    return _engine
