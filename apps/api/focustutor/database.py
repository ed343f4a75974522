from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from typing import Generator

from focustutor.settings import settings
from focustutor.models import Base

engine = None
SessionLocal = None


def make_session_factory(database_url: str) -> sessionmaker:
    kwargs: dict = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
    bind = create_engine(database_url, **kwargs)
    # Create tables if they don't exist
    Base.metadata.create_all(bind=bind)
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


def init_db(database_url: str | None = None):
    global engine, SessionLocal
    database_url = database_url or settings.database_url
    if not database_url:
        return  # Skip DB if not configured

    SessionLocal = make_session_factory(database_url)
    engine = SessionLocal.kw["bind"]


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db() -> Generator[Session, None, None]:
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    with session_scope(SessionLocal) as db:
        yield db
