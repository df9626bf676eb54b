"""Database configuration and session dependency."""

from typing import Iterator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from exam_proctor.config import DATABASE_URL


def _build_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # All connections must share the one in-memory database
        return create_engine(url, echo=False, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, echo=False, connect_args=connect_args)


# echo=False to avoid noisy logs; toggle for debugging
engine = _build_engine(DATABASE_URL)


def create_db_and_tables(bind=None) -> None:
    """Create database tables based on SQLModel metadata."""
    # Import for side effects: registers the table models on the metadata
    from exam_proctor import models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency that yields a database session."""
    with Session(engine) as session:
        yield session
