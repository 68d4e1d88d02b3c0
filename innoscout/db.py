from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from innoscout.config import DEMO_MODEL, get_settings
from innoscout.models import Base
from innoscout.prompts import DEFAULT_BRIEFING_PROMPT, DEFAULT_SCORING_PROMPT

_lock = threading.Lock()
_engine = None
_SessionLocal = None

DEFAULT_SETTINGS: dict[str, str] = {
    "active_model": DEMO_MODEL,
    "scoring_prompt": DEFAULT_SCORING_PROMPT,
    "briefing_prompt": DEFAULT_BRIEFING_PROMPT,
}


def init_db(db_path: str | Path | None = None) -> None:
    """(Re)bind the module engine to *db_path*, creating tables and default settings."""
    global _engine, _SessionLocal
    if db_path is None:
        db_path = get_settings().database_path
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        seed_default_settings(_engine)


def seed_default_settings(engine) -> None:
    """Insert any default setting whose key is absent; existing values are kept."""
    with engine.begin() as conn:
        existing = {row[0] for row in conn.execute(text("SELECT key FROM app_settings"))}
        for key, value in DEFAULT_SETTINGS.items():
            if key not in existing:
                conn.execute(
                    text("INSERT INTO app_settings (key, value) VALUES (:key, :value)"),
                    {"key": key, "value": value},
                )


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager providing a transactional session scope.

    Usage (MCP server, scripts, etc.)::

        with session_scope() as session:
            ...
    """
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def session_generator() -> Generator[Session, None, None]:
    """Generator-based session suitable for FastAPI ``Depends()``."""
    with session_scope() as session:
        yield session
