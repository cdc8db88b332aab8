"""
Fingerprint store: durable per-resource reconciliation records.

Reads and writes go through synchronous SQLAlchemy sessions executed in a
worker thread. Writes for the same (kind, key) are serialized with a
per-key asyncio lock; different keys proceed concurrently.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import anyio
from sqlalchemy import delete, select

from pvesync.config import settings
from pvesync.database.connection import session_scope
from pvesync.database.engine import ensure_schema, init_db, make_session_factory
from pvesync.database.models import ReconciliationRecordRow
from pvesync.resources.models import (
    Outcome,
    ReconciliationRecord,
    ResourceDescriptor,
    ResourceId,
    ResourceKind,
)

logger = logging.getLogger(__name__)


def _to_record(row: ReconciliationRecordRow) -> ReconciliationRecord:
    descriptor = ResourceDescriptor.model_validate(row.descriptor) if row.descriptor else None
    return ReconciliationRecord(
        kind=ResourceKind(row.kind),
        key=row.key,
        fingerprint=row.fingerprint,
        last_state=row.last_state,
        last_outcome=Outcome(row.last_outcome),
        descriptor=descriptor,
        owned=bool(row.owned),
        updated_at=row.updated_at,
    )


class FingerprintStore:
    """Persisted mapping of ResourceId to ReconciliationRecord."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or settings.STATE_DB_PATH
        self.engine = init_db(self.db_path)
        self._session_factory = make_session_factory(self.engine)
        self._locks: Dict[ResourceId, asyncio.Lock] = {}
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._schema_lock:
            if not self._schema_ready:
                await anyio.to_thread.run_sync(ensure_schema, self.engine)
                self._schema_ready = True

    def _lock_for(self, rid: ResourceId) -> asyncio.Lock:
        lock = self._locks.get(rid)
        if lock is None:
            lock = self._locks[rid] = asyncio.Lock()
        return lock

    async def get(self, rid: ResourceId) -> Optional[ReconciliationRecord]:
        """Point lookup by resource id."""
        await self._ensure_schema()
        stmt = select(ReconciliationRecordRow).where(
            ReconciliationRecordRow.kind == rid.kind.value,
            ReconciliationRecordRow.key == rid.key,
        )
        async with session_scope(self._session_factory) as session:
            row = await anyio.to_thread.run_sync(lambda: session.execute(stmt).scalar_one_or_none())
            return _to_record(row) if row else None

    async def all(self) -> List[ReconciliationRecord]:
        """Every record, ordered by kind and key."""
        await self._ensure_schema()
        stmt = select(ReconciliationRecordRow).order_by(
            ReconciliationRecordRow.kind, ReconciliationRecordRow.key
        )
        async with session_scope(self._session_factory) as session:
            rows = await anyio.to_thread.run_sync(lambda: session.execute(stmt).scalars().all())
            return [_to_record(row) for row in rows]

    async def record(self, record: ReconciliationRecord) -> ReconciliationRecord:
        """
        Insert or update the record for ``record.resource_id``.

        Each call is its own transaction; a crash leaves either the previous
        or the new record, never a partial one.
        """
        await self._ensure_schema()
        rid = record.resource_id
        snapshot = record.descriptor.model_dump(mode="json") if record.descriptor else None

        def _upsert(session) -> ReconciliationRecordRow:
            row = session.execute(
                select(ReconciliationRecordRow).where(
                    ReconciliationRecordRow.kind == rid.kind.value,
                    ReconciliationRecordRow.key == rid.key,
                )
            ).scalar_one_or_none()
            if row is None:
                row = ReconciliationRecordRow(kind=rid.kind.value, key=rid.key)
                session.add(row)
            row.fingerprint = record.fingerprint
            row.last_state = record.last_state
            row.last_outcome = record.last_outcome.value
            row.owned = record.owned
            if snapshot is not None:
                row.descriptor = snapshot
            row.updated_at = datetime.now(timezone.utc)
            session.flush()
            return row

        async with self._lock_for(rid):
            async with session_scope(self._session_factory) as session:
                row = await anyio.to_thread.run_sync(_upsert, session)
                stored = _to_record(row)

        logger.debug(f"Recorded {rid}: outcome={stored.last_outcome.value} state={stored.last_state}")
        return stored

    async def delete(self, rid: ResourceId) -> bool:
        """Remove the record for ``rid``; returns whether one existed."""
        await self._ensure_schema()
        stmt = delete(ReconciliationRecordRow).where(
            ReconciliationRecordRow.kind == rid.kind.value,
            ReconciliationRecordRow.key == rid.key,
        )
        async with self._lock_for(rid):
            async with session_scope(self._session_factory) as session:
                result = await anyio.to_thread.run_sync(session.execute, stmt)
                removed = result.rowcount > 0

        if removed:
            logger.debug(f"Deleted record {rid}")
        return removed

    def close(self) -> None:
        self.engine.dispose()
