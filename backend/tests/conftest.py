from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


ROOT = Path(__file__).resolve().parents[2]

# Ensure `backend/` is importable so `app` and `ingestion` resolve as top-level packages.
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.core.base import Base  # noqa: E402
from app.core.db import make_session_factory  # noqa: E402
import app.models  # noqa: E402,F401
from ingestion.core.source_config import SourceConfiguration  # noqa: E402
from ingestion.core.value_objects import SourceType  # noqa: E402


UTC = timezone.utc


class RecordingPublisher:
    """Collects published events in order."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    async def publish(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]


def make_source(
    source_id: str = "coindesk",
    source_type: SourceType = SourceType.RSS,
    *,
    url: str = "https://example.com/feed.xml",
    credentials: dict[str, Any] | None = None,
) -> SourceConfiguration:
    return SourceConfiguration(
        source_id=source_id,
        source_type=source_type,
        name=source_id.title(),
        config={"url": url},
        credentials=credentials,
    )


def minutes_ago(n: int) -> datetime:
    return datetime.now(tz=UTC) - timedelta(minutes=n)


@pytest.fixture()
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """File-backed SQLite so separate sessions see each other's commits."""
    eng = create_engine(f"sqlite:///{tmp_path / 'ingest.db'}", future=True)
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(engine)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
