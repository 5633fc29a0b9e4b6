"""Visitor session persistence.

Every mutation is a single INSERT ... ON CONFLICT (tenant_id, visitor_id)
DO UPDATE statement. There is no read-before-write: concurrent duplicate
sends (retried requests, double clicks) land on the unique constraint and
the database serializes them, so the table holds exactly one row per
visitor and message_count never loses an increment.

message_count is only ever changed as ``message_count + n`` inside the
statement; callers send the increment, never an absolute value.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from widgetchat.core.exceptions import PersistenceError
from widgetchat.db.postgres import build_session_factory
from widgetchat.models.visitor_session import VisitorSession
from widgetchat.schemas.session import SessionPatch, VisitorSessionSummary

logger = structlog.get_logger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class AnalyticsStore(ABC):
    """Persistent store of one session row per (tenant, visitor)."""

    @abstractmethod
    async def upsert_session(
        self, tenant_id: str, visitor_id: str, patch: SessionPatch
    ) -> None:
        """Atomically insert the row if absent, otherwise apply the patch.

        Raises:
            PersistenceError: If the store is unavailable or the write fails.
        """
        ...

    @abstractmethod
    async def get_session(
        self, tenant_id: str, visitor_id: str
    ) -> VisitorSessionSummary | None:
        ...

    @abstractmethod
    async def list_sessions(
        self, tenant_id: str, limit: int = 50
    ) -> list[VisitorSessionSummary]:
        """Most recently active sessions first."""
        ...


class SqlAlchemySessionStore(AnalyticsStore):
    """AnalyticsStore on PostgreSQL or SQLite through SQLAlchemy."""

    def __init__(self, engine: AsyncEngine) -> None:
        dialect = engine.dialect.name
        if dialect not in _DIALECT_INSERTS:
            raise ValueError(f"Unsupported database dialect for upsert: {dialect}")
        self._insert = _DIALECT_INSERTS[dialect]
        self._session_factory = build_session_factory(engine)

    def _build_upsert(self, tenant_id: str, visitor_id: str, patch: SessionPatch) -> Any:
        now = datetime.now(timezone.utc)
        table = VisitorSession.__table__
        stmt = self._insert(table).values(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            visitor_id=visitor_id,
            ip_address=patch.ip_address,
            visitor_name=patch.visitor_name,
            visitor_email=patch.visitor_email,
            first_message=patch.message,
            last_message=patch.message,
            message_count=patch.message_increment,
            started_at=now,
            ended_at=now if patch.message_increment else None,
            updated_at=now,
        )
        excluded = stmt.excluded

        changes: dict[str, Any] = {"updated_at": excluded.updated_at}
        if patch.message_increment:
            changes["message_count"] = table.c.message_count + excluded.message_count
            changes["ended_at"] = excluded.ended_at
        if patch.message is not None:
            changes["last_message"] = excluded.last_message
            changes["first_message"] = func.coalesce(
                table.c.first_message, excluded.first_message
            )
        if patch.ip_address is not None:
            changes["ip_address"] = excluded.ip_address
        if patch.visitor_name is not None:
            changes["visitor_name"] = excluded.visitor_name
        if patch.visitor_email is not None:
            changes["visitor_email"] = excluded.visitor_email

        return stmt.on_conflict_do_update(
            index_elements=[table.c.tenant_id, table.c.visitor_id],
            set_=changes,
        )

    async def upsert_session(
        self, tenant_id: str, visitor_id: str, patch: SessionPatch
    ) -> None:
        stmt = self._build_upsert(tenant_id, visitor_id, patch)
        try:
            async with self._session_factory() as db:
                await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "session_upsert_failed",
                tenant_id=tenant_id,
                visitor_id=visitor_id,
                error=str(e),
            )
            raise PersistenceError(f"Session upsert failed: {e}") from e

    async def get_session(
        self, tenant_id: str, visitor_id: str
    ) -> VisitorSessionSummary | None:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(VisitorSession).where(
                        VisitorSession.tenant_id == tenant_id,
                        VisitorSession.visitor_id == visitor_id,
                    )
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("session_read_failed", tenant_id=tenant_id, error=str(e))
            raise PersistenceError(f"Session read failed: {e}") from e
        return VisitorSessionSummary.model_validate(row) if row is not None else None

    async def list_sessions(
        self, tenant_id: str, limit: int = 50
    ) -> list[VisitorSessionSummary]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(VisitorSession)
                    .where(VisitorSession.tenant_id == tenant_id)
                    .order_by(VisitorSession.updated_at.desc())
                    .limit(limit)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("session_list_failed", tenant_id=tenant_id, error=str(e))
            raise PersistenceError(f"Session list failed: {e}") from e
        return [VisitorSessionSummary.model_validate(row) for row in rows]
