"""Database connection, session management and post-commit hooks."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Generator, List

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from .config import get_settings
from .exceptions import ConflictError
from .logging_config import get_logger

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# Required tables that MUST exist for the system to function
REQUIRED_TABLES = [
    "contacts",
    "properties",
    "leads",
    "appointments",
    "appointment_notes",
    "quotes",
    "outbox_events",
    "crm_pipeline",
]

_is_sqlite = SETTINGS.database_url.startswith("sqlite")
_is_memory = _is_sqlite and ":memory:" in SETTINGS.database_url

_POST_COMMIT_KEY = "post_commit_hooks"


def _check_required_tables(bind) -> List[str]:
    """
    Check which required tables are missing.

    Returns:
        List of missing table names.
    """
    try:
        existing_tables = inspect(bind).get_table_names()
        return [t for t in REQUIRED_TABLES if t not in existing_tables]
    except Exception as e:
        LOGGER.warning(f"Could not inspect tables: {e}")
        return []


if _is_sqlite:
    # In-memory databases must share one connection or every checkout sees an empty schema
    engine = create_engine(
        SETTINGS.database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if _is_memory else NullPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if not _is_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
else:
    engine = create_engine(
        SETTINGS.database_url,
        pool_size=SETTINGS.db_pool_size,
        max_overflow=SETTINGS.db_max_overflow,
        pool_timeout=SETTINGS.db_pool_timeout,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Post-commit hooks
# =============================================================================


def after_commit(session: Session, hook: Callable[[], Any]) -> None:
    """
    Register ``hook`` to run once the session's current transaction commits.

    Hooks are dropped if the transaction rolls back. A failing hook is logged
    and never affects the commit or the other hooks. Hooks must not use
    ``session`` for SQL; open a new session instead.
    """
    session.info.setdefault(_POST_COMMIT_KEY, []).append(hook)


@event.listens_for(Session, "after_commit")
def _run_post_commit_hooks(session: Session) -> None:
    hooks = session.info.pop(_POST_COMMIT_KEY, [])
    for hook in hooks:
        try:
            hook()
        except Exception:
            LOGGER.exception(f"Post-commit hook {getattr(hook, '__name__', hook)!r} failed")


@event.listens_for(Session, "after_rollback")
def _discard_post_commit_hooks(session: Session) -> None:
    dropped = session.info.pop(_POST_COMMIT_KEY, None)
    if dropped:
        LOGGER.debug(f"Discarded {len(dropped)} post-commit hooks after rollback")


def flush_or_conflict(session: Session, message: str = "Conflicting write", reason: str = "conflict") -> None:
    """Flush, turning a uniqueness or FK violation into ConflictError."""
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise ConflictError(message, reason=reason) from e


# =============================================================================
# Sessions
# =============================================================================


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Yields:
        SQLAlchemy Session object.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session_factory() -> Callable[[], Session]:
    """
    Return the session factory used by background work.

    The outbox dispatcher and post-commit hooks open their own short
    transactions with it, outside of any request session.
    """
    return SessionLocal


def init_db(create_missing_only: bool = True) -> dict:
    """
    Initialize database tables.

    Args:
        create_missing_only: If True, only creates missing tables (safe).
                            If False, creates all tables (use for fresh install).

    Returns:
        Dict with initialization results.
    """
    from . import models  # noqa: F401

    result = {
        "status": "success",
        "tables_created": [],
        "tables_existing": [],
        "warnings": [],
    }

    try:
        existing_tables = set(inspect(engine).get_table_names())

        if create_missing_only and existing_tables:
            missing_tables = set(Base.metadata.tables.keys()) - existing_tables
            if missing_tables:
                tables_to_create = [Base.metadata.tables[name] for name in missing_tables]
                Base.metadata.create_all(bind=engine, tables=tables_to_create)
                result["tables_created"] = sorted(missing_tables)
                LOGGER.info(f"Created missing tables: {sorted(missing_tables)}")
            result["tables_existing"] = sorted(existing_tables)
        else:
            Base.metadata.create_all(bind=engine)
            new_tables = set(inspect(engine).get_table_names())
            result["tables_created"] = sorted(new_tables - existing_tables)
            result["tables_existing"] = sorted(existing_tables)

        missing_required = _check_required_tables(engine)
        if missing_required:
            result["warnings"].append(f"Missing required tables: {missing_required}")
            result["status"] = "warning"

    except Exception as e:
        result["status"] = "error"
        result["error"] = str(e)
        LOGGER.error(f"init_db failed: {e}")

    return result


def validate_database() -> dict:
    """
    Validate database connection and required tables.

    Call this at application startup to ensure the database is ready.

    Returns:
        Dict with validation results.
    """
    result = {
        "status": "ok",
        "database_url": engine.url.render_as_string(hide_password=True),
        "tables_found": [],
        "tables_missing": [],
        "errors": [],
    }

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        result["tables_found"] = inspect(engine).get_table_names()
        missing = _check_required_tables(engine)
        result["tables_missing"] = missing

        if missing:
            result["status"] = "missing_tables"
            result["errors"].append(f"Missing required tables: {missing}")

    except Exception as e:
        result["status"] = "error"
        result["errors"].append(str(e))

    return result
