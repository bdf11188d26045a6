"""Engine and session helpers for the relational store."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..exceptions import StoreError
from .schema import Base


def create_engine_from_url(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections may be shared across threads."""
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    try:
        return create_engine(database_url, echo=echo, connect_args=connect_args)
    except (SQLAlchemyError, ValueError) as exc:
        raise StoreError(f"Cannot create database engine: {exc}") from exc


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise StoreError(f"Failed initializing database schema: {exc}") from exc


def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def transaction(sessions: sessionmaker[Session]) -> Iterator[Session]:
    """Run a unit of work, committing on success.

    Integrity errors propagate unchanged so callers can treat duplicate
    inserts as no-ops; every other database error becomes a StoreError.
    """
    session = sessions()
    try:
        yield session
        session.commit()
    except IntegrityError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        raise StoreError(f"Database operation failed: {exc}") from exc
    finally:
        session.close()
