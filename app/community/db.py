from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from flask import Flask, current_app, g
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_ENGINE_KEY = "sqlalchemy_engine"
_FACTORY_KEY = "sqlalchemy_sessionmaker"


def normalize_database_url(url: str) -> str:
    """Hosting providers still hand out postgres:// URLs; SQLAlchemy 2 only accepts postgresql://."""
    url = (url or "").strip()
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def build_engine(db_url: str) -> Engine:
    db_url = normalize_database_url(db_url)
    if db_url.startswith("sqlite"):
        # The dev server and test client hand one connection between threads.
        return create_engine(db_url, pool_pre_ping=True, connect_args={"check_same_thread": False})
    return create_engine(
        db_url,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
    )


def init_db(app: Flask) -> None:
    engine = build_engine(app.config["DATABASE_URL"])
    app.extensions[_ENGINE_KEY] = engine
    app.extensions[_FACTORY_KEY] = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    logger.info("Database engine ready (dialect=%s)", engine.dialect.name)


def dispose_engine(app: Flask) -> None:
    """Drop pooled connections inherited from a parent process (gunicorn preload)."""
    engine: Engine | None = app.extensions.get(_ENGINE_KEY)
    if engine is not None:
        engine.dispose(close=False)


def db_session() -> Session:
    """
    Request-scoped session, opened lazily on first use and closed on teardown.
    Handlers commit explicitly; anything uncommitted is rolled back on error.
    """
    s: Session | None = g.get("db_session")
    if s is None:
        s = current_app.extensions[_FACTORY_KEY]()
        g.db_session = s
    return s


def teardown_db_session(exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is None:
        return
    if exc is not None:
        s.rollback()
    s.close()


@contextmanager
def session_scope(app: Flask) -> Iterator[Session]:
    """Session for work outside a request (seeding, tests). Commits on success."""
    s: Session = app.extensions[_FACTORY_KEY]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
