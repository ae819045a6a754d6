"""Database configuration and session management"""

from sqlalchemy import create_engine, event, text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from app.config import settings
import logging

logger = logging.getLogger(__name__)


def _enable_sqlite_immediate_transactions(engine: Engine) -> None:
    """
    Make every SQLite transaction take the write lock up front.

    pysqlite defers BEGIN until the first write, so two readers that both
    decide to write deadlock on the lock upgrade. Issuing BEGIN IMMEDIATE
    ourselves serialises writers instead.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for(url: str, echo: bool = False) -> Engine:
    """
    Build an engine for the given URL.

    Args:
        url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Engine: Configured engine
    """
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=echo,
        )
        _enable_sqlite_immediate_transactions(engine)
        return engine

    return create_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = create_engine_for(settings.get_database_url(), echo=settings.DEBUG)

# Create session factory
SessionLocal = create_session_factory(engine)

# Create base class for models
Base = declarative_base()

# Import models after Base is defined so metadata is populated.
from app import models  # noqa: E402,F401


def init_db(bind: Engine = None, app_settings=None) -> None:
    """
    Initialize database according to configured strategy.

    DB_INIT_MODE:
      - migrate: require alembic_version table (migration-first discipline)
      - create_all: create missing tables from model metadata (local/dev/tests)
      - off: skip initialization check
    """
    bind = bind or engine
    app_settings = app_settings or settings
    mode = app_settings.DB_INIT_MODE.lower().strip()
    if mode == "off":
        logger.info("DB initialization check skipped (DB_INIT_MODE=off)")
        return

    if mode == "create_all":
        Base.metadata.create_all(bind=bind)
        logger.warning("Using create_all database initialization (recommended only for local development).")
        return

    if mode == "migrate":
        with bind.connect() as conn:
            if bind.dialect.name == "postgresql":
                version_table_exists = conn.execute(
                    text("SELECT to_regclass('public.alembic_version')")
                ).scalar()
                exists = bool(version_table_exists)
            elif bind.dialect.name == "sqlite":
                version_table_exists = conn.execute(
                    text(
                        "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
                    )
                ).fetchone()
                exists = bool(version_table_exists)
            else:
                exists = "alembic_version" in inspect(conn).get_table_names()
            if app_settings.DB_REQUIRE_HEAD and not exists:
                raise RuntimeError(
                    "Migration table missing. Run Alembic migrations before starting the API."
                )
        logger.info("Migration metadata detected.")
        return

    raise RuntimeError(f"Unknown DB_INIT_MODE: {app_settings.DB_INIT_MODE}")
