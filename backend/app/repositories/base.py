"""Read-side repository base.

- Query handlers only read. The write side (saving content, versioned job
  updates) lives in dedicated writer classes.
- The guard rejects DML and sessions carrying pending changes, so a read path
  can never flush a half-built write by accident.
- The engine is synchronous. Every query opens its own short-lived Session and
  runs in a worker thread (``asyncio.to_thread``), so callers on the event loop
  never wait on database I/O and no Session is shared between concurrent calls.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, Optional, TypeVar, cast

from sqlalchemy.engine import Result
from sqlalchemy.orm import Session
from sqlalchemy.sql import Executable
from sqlalchemy.sql.dml import Delete, Insert, Update
from sqlalchemy.sql.selectable import Select


class RepositoryReadOnlyViolation(RuntimeError):
    """Raised when a read repository detects a write or mutation attempt."""


SessionFactory = Callable[[], Session]
T = TypeVar("T")
R = TypeVar("R")


class BaseRepository(Generic[T]):
    """Guarded SELECT execution, one Session per call, off the event loop."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _assert_clean_uow(session: Session) -> None:
        if session.new or session.dirty or session.deleted:
            raise RepositoryReadOnlyViolation(
                "Read repository used with pending changes "
                f"(new={len(session.new)}, dirty={len(session.dirty)}, deleted={len(session.deleted)})."
            )

    @staticmethod
    def _assert_select_only(stmt: Executable) -> None:
        if isinstance(stmt, (Insert, Update, Delete)):
            raise RepositoryReadOnlyViolation("Read repository refused a DML statement.")
        if not isinstance(stmt, Select):
            raise RepositoryReadOnlyViolation(
                f"Read repository accepts SELECT statements only (got {type(stmt)!r})."
            )

    def _guarded_execute(
        self, session: Session, stmt: Executable, params: Optional[dict[str, Any]] = None
    ) -> Result[Any]:
        self._assert_select_only(stmt)
        self._assert_clean_uow(session)
        result = session.execute(stmt, params or {})
        self._assert_clean_uow(session)
        return result

    async def _query(self, work: Callable[[Session], R]) -> R:
        """Run ``work`` against a fresh Session in a worker thread.

        Results must be fully materialized inside ``work``.
        """

        def _in_thread() -> R:
            with self._session_factory() as session:
                return work(session)

        return await asyncio.to_thread(_in_thread)

    async def _first(self, stmt: Executable) -> Optional[T]:
        return await self._query(lambda s: cast(Optional[T], self._guarded_execute(s, stmt).scalars().first()))

    async def _all(self, stmt: Executable) -> list[T]:
        return await self._query(lambda s: cast(list[T], list(self._guarded_execute(s, stmt).scalars().all())))
