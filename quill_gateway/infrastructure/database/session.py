"""Database engine and session factory with connection pooling"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from quill_gateway.config import settings


def build_engine(database_url: str, isolation_level: str | None = None) -> Engine:
    """Create an engine; SQLite gets thread-safe connect args, others a pool"""
    kwargs = {"pool_pre_ping": True}
    if isolation_level:
        kwargs["isolation_level"] = isolation_level

    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        # Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
        kwargs.update(pool_size=10, max_overflow=10, pool_recycle=3600)

    return create_engine(database_url, **kwargs)


engine = build_engine(settings.database_url, settings.database_isolation_level)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
