from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.csrdash.db import _sqlite_transactional


def create_script_engine(db_url: str):
    kwargs: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        kwargs["pool_recycle"] = 1800
    engine = create_engine(db_url, **kwargs)
    if db_url.startswith("sqlite"):
        _sqlite_transactional(engine)
    return engine


@contextmanager
def script_session(db_url: str):
    """Commit-or-rollback session over a throwaway engine (scripts only)."""
    engine = create_script_engine(db_url)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def database_url(explicit: str | None = None) -> str:
    import os

    return (explicit or os.environ.get("DATABASE_URL") or "sqlite:///csrdash.db").strip()
