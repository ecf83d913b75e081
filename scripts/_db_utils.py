from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.community.db import build_engine


@contextmanager
def script_session(db_url: str):
    """One-shot session for ops scripts; commits on success and disposes the engine."""
    # Every mapper (module tables included) must be registered before the first query.
    import app.community.models  # noqa: F401

    engine = build_engine(db_url)
    s = Session(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
