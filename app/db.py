"""SQLAlchemy engine, session factory and schema bootstrap.

The completions service only reads from Postgres; the tables are filled by the
ingestion and project-management services. init_db still creates them (and the
pgvector extension) so a fresh database can be started locally or in tests.

Configuration is read from app.config.settings.DATABASE_URL.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import settings

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def init_db(bind: Engine = engine) -> None:
    """Create the vector extension, the project/file/section tables and their indexes.

    Idempotent: existing objects are left untouched.
    """
    with bind.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))

    # Tables register on Base.metadata when the models module is imported
    from app import models  # noqa: F401

    Base.metadata.create_all(bind=bind)


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """Yield a session that commits on success, rolls back on error and always closes."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
