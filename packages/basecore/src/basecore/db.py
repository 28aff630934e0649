import functools

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from basecore.settings import get_settings


def engine_options(database_url: str) -> dict:
    """Engine keyword arguments for a database URL."""
    if database_url.startswith("sqlite"):
        # Units of work may run from worker threads (FastAPI sync deps)
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


@functools.lru_cache()
def get_engine() -> Engine:
    """
    Get SQLAlchemy engine (cached).

    Created lazily from DATABASE_URL so importing basecore has no side effects.
    """
    url = get_settings().DATABASE_URL
    return create_engine(url, echo=False, **engine_options(url))


@functools.lru_cache()
def get_sessionmaker() -> sessionmaker:
    """
    Get SQLAlchemy sessionmaker (cached).

    Objects stay readable after commit; the session engine hands rows across
    short-lived units of work.
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=get_engine())


def get_db():
    """Yield a database session and close it after use."""
    db: Session = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()


def init_db(metadata) -> None:
    """Create all tables of the given metadata (development databases)."""
    metadata.create_all(bind=get_engine())
