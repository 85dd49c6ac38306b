"""Reference store: what has been learned about each reference token.

Records are immutable snapshots. ``merge`` only fills fields that are still
unknown, so the first order id discovered for a token is never replaced.
Nothing is evicted; callers decide how long a record is worth trusting.
"""
import asyncio
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import sessionmaker

from touchup_api.models import RefSession


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionRecord:
    order_id: Optional[str] = None
    link_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def filled_from(self, partial: "SessionRecord") -> "SessionRecord":
        return replace(
            self,
            order_id=self.order_id or partial.order_id,
            link_id=self.link_id or partial.link_id,
            created_at=self.created_at or partial.created_at,
        )

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "linkId": self.link_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class ReferenceStore(Protocol):
    async def put(self, ref: str, record: SessionRecord) -> None: ...

    async def merge(self, ref: str, partial: SessionRecord) -> SessionRecord: ...

    async def get(self, ref: str) -> Optional[SessionRecord]: ...


class MemoryReferenceStore:
    """Process-local store. Contents are lost on restart."""

    def __init__(self):
        self._records: Dict[str, SessionRecord] = {}
        self._lock = asyncio.Lock()

    async def put(self, ref: str, record: SessionRecord) -> None:
        if record.created_at is None:
            record = replace(record, created_at=utcnow())
        async with self._lock:
            self._records[ref] = record

    async def merge(self, ref: str, partial: SessionRecord) -> SessionRecord:
        async with self._lock:
            current = self._records.get(ref)
            if current is None:
                merged = partial if partial.created_at else replace(partial, created_at=utcnow())
            else:
                merged = current.filled_from(partial)
            self._records[ref] = merged
            return merged

    async def get(self, ref: str) -> Optional[SessionRecord]:
        async with self._lock:
            return self._records.get(ref)

    def __len__(self):
        return len(self._records)


class SqlReferenceStore:
    """Store backed by the ``ref_sessions`` table.

    Sessions are synchronous, so every call is pushed to the threadpool. The
    lock keeps read-modify-write in ``merge`` atomic within this process.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._lock = threading.Lock()

    @staticmethod
    def _to_record(row: RefSession) -> SessionRecord:
        created_at = row.created_at
        if created_at is not None and created_at.tzinfo is None:
            # SQLite drops tzinfo
            created_at = created_at.replace(tzinfo=timezone.utc)
        return SessionRecord(order_id=row.order_id, link_id=row.link_id, created_at=created_at)

    def _put(self, ref: str, record: SessionRecord) -> None:
        with self._lock, self._session_factory() as db:
            row = db.get(RefSession, ref) or RefSession(ref=ref)
            row.order_id = record.order_id
            row.link_id = record.link_id
            row.created_at = record.created_at or utcnow()
            db.add(row)
            db.commit()

    def _merge(self, ref: str, partial: SessionRecord) -> SessionRecord:
        with self._lock, self._session_factory() as db:
            row = db.get(RefSession, ref)
            if row is None:
                row = RefSession(ref=ref, created_at=partial.created_at or utcnow())
                db.add(row)
            if not row.order_id:
                row.order_id = partial.order_id
            if not row.link_id:
                row.link_id = partial.link_id
            db.commit()
            db.refresh(row)
            return self._to_record(row)

    def _get(self, ref: str) -> Optional[SessionRecord]:
        with self._session_factory() as db:
            row = db.get(RefSession, ref)
            return self._to_record(row) if row else None

    async def put(self, ref: str, record: SessionRecord) -> None:
        await run_in_threadpool(self._put, ref, record)

    async def merge(self, ref: str, partial: SessionRecord) -> SessionRecord:
        return await run_in_threadpool(self._merge, ref, partial)

    async def get(self, ref: str) -> Optional[SessionRecord]:
        return await run_in_threadpool(self._get, ref)
