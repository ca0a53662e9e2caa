"""Database session and base configuration.

WHAT:
    Provides the SQLAlchemy engine and session factory, FastAPI and
    context-manager session helpers, and a dialect-aware upsert used by
    the sync jobs.

WHY:
    - One sync engine serves the API, the ARQ worker and the transcript loop
    - PostgreSQL in production, SQLite for tests and local development
    - Upserts go through ON CONFLICT on both dialects so repeated syncs
      overwrite rows instead of duplicating them

USAGE:
    from funnelboard.database import SessionLocal, get_db

    @app.get("/items")
    def get_items(db: Session = Depends(get_db)):
        return db.query(Item).all()
"""

import os
from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterable, List, Sequence

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker


# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================

def _get_database_url() -> str:
    """Get DATABASE_URL from environment, loading .env if needed.

    Returns:
        Database connection string

    Raises:
        RuntimeError: If DATABASE_URL is not configured
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        # Attempt to load from local .env for developer convenience
        from funnelboard.utils.env import load_env_file
        load_env_file()
        database_url = os.getenv("DATABASE_URL")

    if not database_url:
        raise RuntimeError(
            "DATABASE_URL is not set. "
            "Ensure backend/.env is loaded or env var is exported."
        )

    if database_url.startswith("postgres://"):
        # Heroku-style URL
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return database_url


DATABASE_URL = _get_database_url()


# =============================================================================
# ENGINE
# =============================================================================

# NOTE: SQLite engines (used in tests/dev) do not support pool_size/max_overflow.
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=10,           # Base pool size
        max_overflow=20,        # Allow up to 30 total connections under load
        pool_recycle=3600,      # Recycle connections every hour
        pool_pre_ping=True,     # Validate connections before use
    )

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


# =============================================================================
# BASE MODEL (imported from models for single registry)
# =============================================================================

from .models import Base  # noqa: E402


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """Yield a database session for FastAPI dependency injection.

    Yields:
        SQLAlchemy Session instance
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# CONTEXT MANAGERS (for non-FastAPI usage)
# =============================================================================

@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """Context manager for sessions outside FastAPI.

    WHAT:
        Creates a session with automatic cleanup.

    WHY:
        For use in workers and scripts where FastAPI dependency
        injection isn't available.

    Example:
        with get_sync_session() as db:
            pending = db.query(AdTranscript).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# UPSERT
# =============================================================================

def upsert_rows(
    db: Session,
    model,
    rows: Sequence[Dict[str, Any]],
    conflict_columns: Iterable[str],
    exclude_from_update: Iterable[str] = (),
) -> int:
    """INSERT ... ON CONFLICT DO UPDATE for a batch of rows.

    WHAT:
        Builds a dialect-specific insert (PostgreSQL or SQLite) and updates
        every non-key column on conflict. Last write wins.

    WHY:
        Sync jobs re-fetch overlapping windows; the unique key must absorb
        those repeats. Does not commit.

    Args:
        db: Active session
        model: ORM model class
        rows: Column dicts; every row must carry the same keys
        conflict_columns: Columns of the unique constraint
        exclude_from_update: Columns left untouched on conflict (e.g. created_at)

    Returns:
        Number of rows sent
    """
    if not rows:
        return 0

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise RuntimeError(f"Upsert not supported for dialect: {dialect}")

    conflict_columns = list(conflict_columns)
    skip = set(conflict_columns) | set(exclude_from_update) | {"id"}

    stmt = insert(model.__table__).values(list(rows))
    update_columns: List[str] = [key for key in rows[0].keys() if key not in skip]
    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_={key: stmt.excluded[key] for key in update_columns},
    )
    db.execute(stmt)
    return len(rows)
