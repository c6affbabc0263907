# app/database.py
"""
Database connection, session management, and table creation.
Uses SQLAlchemy. Persistence is optional: with no DATABASE_URL the engine
stays None and get_db() yields None, which routers treat as "memory only".
"""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from app.config import settings

engine: Optional[Engine] = None

SessionLocal = sessionmaker(autocommit=False, autoflush=False)

Base = declarative_base()


def init_engine(url: Optional[str]) -> Optional[Engine]:
    """(Re)bind the session factory to a new engine. Returns None when url is empty."""
    global engine
    if not url:
        engine = None
        return None

    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        engine = create_engine(
            url,
            pool_pre_ping=True,          # Auto-reconnect if DB connection drops
            pool_size=10,
            max_overflow=20,
            echo=False,                  # Set True to log all SQL queries (debug only)
        )
    SessionLocal.configure(bind=engine)
    return engine


init_engine(settings.DATABASE_URL)


def get_db():
    """FastAPI dependency — yields a DB session (or None when persistence is off)."""
    if engine is None:
        yield None
        return
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    from app.models.counter_log import CounterLog       # noqa
    from app.models.counter_event import CounterEvent   # noqa

    if engine is None:
        return
    Base.metadata.create_all(bind=engine)
