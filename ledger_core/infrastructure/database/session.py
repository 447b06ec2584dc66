"""Database engine and session factory construction

Nothing here is created at import time: callers build a session factory and
pass it into services and jobs explicitly.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from ledger_core.infrastructure.database.models import Base


def create_db_engine(database_url: str) -> Engine:
    """Create an engine with pooling suited to the backend"""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})

    # Recycle after 1 hour to avoid stale connections
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create missing tables"""
    Base.metadata.create_all(bind=engine)
