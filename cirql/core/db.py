from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from loguru import logger

from cirql.core.config import DATABASE_URL

# --- Base (single source of truth) ---
Base = declarative_base()


def make_engine(url: str = DATABASE_URL) -> Engine:
    """
    Engine for `url`.

    SQLite connections are shared with the proximity monitor threads, so
    same-thread checks are off; an in-memory database is pinned to a single
    connection or every checkout would see an empty schema.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, echo=False, future=True, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(url, echo=False, future=True, **kwargs)


# --- Engine ---
engine = make_engine()

# --- Session factory ---
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)

# --- SQL query logging ---
@event.listens_for(Engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    logger.trace(f"SQL: {statement} | params={parameters}")
