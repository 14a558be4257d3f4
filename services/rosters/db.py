"""Database engine and transaction helpers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


def create_db_engine(db_url: str = "sqlite:///rosters.db", echo: bool = False):
    """Create SQLAlchemy engine. In-memory SQLite shares one connection across threads."""
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            db_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if db_url.startswith("sqlite"):
        return create_engine(db_url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(db_url, echo=echo)


class Database:
    """Manages database connection and session factory."""

    def __init__(self, db_url: str = "sqlite:///rosters.db", echo: bool = False):
        self.engine = create_db_engine(db_url, echo=echo)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        """Create all tables if they don't exist."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        Base.metadata.drop_all(self.engine)

    def get_session(self) -> Session:
        return self.SessionLocal()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Commit on success; roll back everything on any exception and re-raise."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()
