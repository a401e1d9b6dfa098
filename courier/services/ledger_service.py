"""
Attempt ledger service.

CRUD over the http_attempts table. Every operation uses its own session
and reports a LedgerResult, so the retry engine keeps delivering even
when the store is unavailable (unless fail_open is turned off).
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courier.errors import StorageFailure
from courier.logging_config import get_logger
from courier.models.attempt import HttpAttempt
from courier.routes.metrics import track_ledger_error

logger = get_logger(component="ledger")

STORAGE_ERRORS = (SQLAlchemyError, OSError)


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a ledger write."""
    ok: bool
    error: str | None = None
    rows: int = 0


class AttemptLedger:
    """Service for recording in-flight delivery sequences."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hostname: str | None = None,
        fail_open: bool = True,
    ):
        self.session_factory = session_factory
        self.hostname = hostname
        self.fail_open = fail_open

    def _failed(self, operation: str, exc: Exception, **context) -> LedgerResult:
        logger.error(f"ledger_{operation}_failed", error=str(exc), **context)
        track_ledger_error(operation)
        if not self.fail_open:
            raise StorageFailure(operation, str(exc)) from exc
        return LedgerResult(ok=False, error=str(exc))

    async def insert(
        self,
        request_id: str,
        attempt: int,
        error_code: str | None,
        payload: Any,
        abandoned: bool = False,
    ) -> LedgerResult:
        """
        Insert a record for a delivery sequence.

        Args:
            request_id: Sequence identifier (UUID)
            attempt: Attempts made so far
            error_code: Classification of the latest failure
            payload: Payload to replay
            abandoned: Whether the sequence is already exhausted
        """
        record = HttpAttempt(
            request_id=request_id,
            attempt_number=attempt,
            error=error_code,
            payload=payload,
            abandoned=abandoned,
            hostname=self.hostname,
        )
        try:
            async with self.session_factory() as db:
                db.add(record)
                await db.commit()
        except STORAGE_ERRORS as e:
            return self._failed("insert", e, request_id=request_id)

        logger.info("ledger_record_inserted", request_id=request_id, attempt=attempt, abandoned=abandoned)
        return LedgerResult(ok=True, rows=1)

    async def mark_abandoned(self, request_id: str, attempt: int, error_code: str | None) -> LedgerResult:
        """Flag a record as abandoned and store its final attempt number and error."""
        stmt = (
            update(HttpAttempt)
            .where(HttpAttempt.request_id == request_id)
            .values(abandoned=True, attempt_number=attempt, error=error_code)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                await db.commit()
        except STORAGE_ERRORS as e:
            return self._failed("mark_abandoned", e, request_id=request_id)

        if result.rowcount == 0:
            logger.warning("ledger_record_missing", request_id=request_id, operation="mark_abandoned")
        return LedgerResult(ok=True, rows=result.rowcount)

    async def delete(self, request_id: str | None) -> LedgerResult:
        """Delete a record. No-op for an empty request_id."""
        if not request_id:
            return LedgerResult(ok=True)

        stmt = delete(HttpAttempt).where(HttpAttempt.request_id == request_id)
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                await db.commit()
        except STORAGE_ERRORS as e:
            return self._failed("delete", e, request_id=request_id)

        logger.info("ledger_record_deleted", request_id=request_id, rows=result.rowcount)
        return LedgerResult(ok=True, rows=result.rowcount)

    async def list_pending(self, include_abandoned: bool = False) -> list[HttpAttempt]:
        """
        List ledger records, oldest first.

        Abandoned records are excluded unless include_abandoned is set.
        Returns an empty list if the store cannot be read (fail-open).
        """
        stmt = select(HttpAttempt).order_by(HttpAttempt.id)
        if not include_abandoned:
            stmt = stmt.where(HttpAttempt.abandoned.is_(False))
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except STORAGE_ERRORS as e:
            self._failed("list_pending", e)
            return []

    async def get(self, request_id: str) -> HttpAttempt | None:
        """Get the record for a request ID."""
        stmt = select(HttpAttempt).where(HttpAttempt.request_id == request_id).order_by(HttpAttempt.id)
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return result.scalars().first()
        except STORAGE_ERRORS as e:
            self._failed("get", e, request_id=request_id)
            return None

    async def purge_abandoned(self, older_than: timedelta | None = None) -> LedgerResult:
        """
        Delete abandoned records.

        Args:
            older_than: Only purge records first persisted longer ago than this
        """
        stmt = delete(HttpAttempt).where(HttpAttempt.abandoned.is_(True))
        if older_than is not None:
            stmt = stmt.where(HttpAttempt.timestamp < datetime.now(timezone.utc) - older_than)
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                await db.commit()
        except STORAGE_ERRORS as e:
            return self._failed("purge_abandoned", e)

        logger.info("ledger_abandoned_purged", rows=result.rowcount)
        return LedgerResult(ok=True, rows=result.rowcount)
