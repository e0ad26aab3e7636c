"""
Database configuration for SQLAlchemy + SQLite.

Locations and weather snapshots live in one local SQLite file; the sync
engine opens its own sessions from SessionLocal, request handlers get one
per request from get_db.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from .settings import settings

DATABASE_URL = f"sqlite:///{settings.sqlite_path}"

# SQLite needs check_same_thread=False for FastAPI because FastAPI uses threads.
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
)

# Session factory used by dependency injection and the sync engine
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


def get_db():
    """
    FastAPI dependency that yields a DB session per request,
    then closes it cleanly afterwards.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
