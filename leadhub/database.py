"""
Database engine + session factory.

Defaults to SQLite for local dev, Postgres in production. Every connection is
opened with a bounded connect timeout, and Postgres statements carry a
statement_timeout so no query hangs a request.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from leadhub.config import (
    DATABASE_URL, DB_CONNECT_TIMEOUT, DB_STATEMENT_TIMEOUT_MS, DB_POOL_TIMEOUT,
)


class Base(DeclarativeBase):
    pass


# Hosting providers inject postgres:// but SQLAlchemy 2.x requires postgresql://
url = DATABASE_URL.replace('postgres://', 'postgresql://', 1)


def build_engine(db_url):
    """Create an engine with dialect-appropriate timeouts."""
    if db_url.startswith('sqlite'):
        return create_engine(
            db_url,
            connect_args={'check_same_thread': False, 'timeout': DB_CONNECT_TIMEOUT},
        )
    return create_engine(
        db_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_timeout=DB_POOL_TIMEOUT,
        connect_args={
            'connect_timeout': DB_CONNECT_TIMEOUT,
            'options': f'-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}',
        },
    )


engine = build_engine(url)

SessionLocal = sessionmaker(bind=engine)


def get_session():
    """Return a new DB session."""
    return SessionLocal()
