import asyncio
import json
import os
import threading
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Iterable, List

import aiofiles
import aiofiles.os
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from gait_recorder.core.errors import LockTimeout, NotFound, StorageError
from gait_recorder.core.logger import get_logger
from gait_recorder.db.models import SessionRow
from gait_recorder.schemas.session import SessionRecord

logger = get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_start_time(value: str | None) -> datetime:
    """Parse an ISO-8601 timestamp for ordering; anything unreadable is the epoch."""
    if not value:
        return EPOCH
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_newest_first(records: Iterable[SessionRecord]) -> List[SessionRecord]:
    return sorted(records, key=lambda r: parse_start_time(r.start_time), reverse=True)


class RecordStore:
    """Session metadata keyed by session id.

    Every call is atomic on its own; nothing spans two calls.
    """

    backend = "abstract"

    async def upsert(self, record: SessionRecord) -> SessionRecord:
        raise NotImplementedError

    async def get_by_id(self, session_id: str) -> SessionRecord:
        raise NotImplementedError

    async def list_all(self) -> List[SessionRecord]:
        raise NotImplementedError

    async def delete_by_id(self, session_id: str) -> SessionRecord:
        raise NotImplementedError

    async def count(self) -> int:
        raise NotImplementedError


class SqlRecordStore(RecordStore):
    """Relational backend; isolation comes from the database transaction.

    SQLAlchemy calls are blocking, so each one runs in the threadpool. The
    ORM session is not thread safe, hence one call at a time per store.
    """

    backend = "sqlite"

    def __init__(self, db: Session):
        self.db = db
        self._session_lock = threading.Lock()

    async def _run(self, fn, *args):
        def locked():
            with self._session_lock:
                return fn(*args)

        return await run_in_threadpool(locked)

    def _upsert(self, record: SessionRecord) -> SessionRecord:
        values = {
            "id": record.id,
            "patient_id": record.patient_id,
            "assessment": record.assessment,
            "start_time": record.start_time,
            "end_time": record.end_time,
            "duration_ms": record.duration_ms,
            "filename": record.filename,
            "filepath": record.filepath,
            "size": record.size,
        }
        stmt = sqlite_insert(SessionRow).values(**values)
        # created_at keeps its first-insert value
        stmt = stmt.on_conflict_do_update(
            index_elements=[SessionRow.id],
            set_={key: stmt.excluded[key] for key in values if key != "id"},
        )
        try:
            self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError("Failed to save session", details=str(e)) from e
        return self._get_by_id(record.id)

    def _get_by_id(self, session_id: str) -> SessionRecord:
        try:
            row = self.db.get(SessionRow, session_id, populate_existing=True)
        except SQLAlchemyError as e:
            raise StorageError("Failed to read session", details=str(e)) from e
        if row is None:
            raise NotFound("Session not found")
        return SessionRecord.model_validate(row)

    def _list_all(self) -> List[SessionRecord]:
        try:
            rows = self.db.scalars(
                select(SessionRow).order_by(SessionRow.start_time.desc())
            ).all()
        except SQLAlchemyError as e:
            raise StorageError("Failed to fetch sessions", details=str(e)) from e
        return sort_newest_first(SessionRecord.model_validate(row) for row in rows)

    def _delete_by_id(self, session_id: str) -> SessionRecord:
        try:
            row = self.db.get(SessionRow, session_id)
            if row is None:
                raise NotFound("Session not found")
            record = SessionRecord.model_validate(row)
            self.db.delete(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError("Failed to delete session", details=str(e)) from e
        return record

    def _count(self) -> int:
        try:
            return self.db.scalar(select(func.count()).select_from(SessionRow)) or 0
        except SQLAlchemyError as e:
            raise StorageError("Failed to count sessions", details=str(e)) from e

    async def upsert(self, record: SessionRecord) -> SessionRecord:
        return await self._run(self._upsert, record)

    async def get_by_id(self, session_id: str) -> SessionRecord:
        return await self._run(self._get_by_id, session_id)

    async def list_all(self) -> List[SessionRecord]:
        return await self._run(self._list_all)

    async def delete_by_id(self, session_id: str) -> SessionRecord:
        return await self._run(self._delete_by_id, session_id)

    async def count(self) -> int:
        return await self._run(self._count)


class JsonRecordStore(RecordStore):
    """Flat-file backend: the whole collection lives in one JSON document.

    Every mutation re-reads the document from disk, applies the change and
    writes the whole document back while holding an advisory write lock.
    The lock is owned by this instance, so it only serializes writers inside
    one process; two processes sharing the file can still lose updates.
    """

    backend = "json"

    def __init__(self, path: Path, lock_retries: int = 50, lock_retry_delay: float = 0.1):
        self.path = Path(path)
        self.lock_retries = lock_retries
        self.lock_retry_delay = lock_retry_delay
        self._lock = asyncio.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def _write_lock(self) -> AsyncIterator[None]:
        for attempt in range(self.lock_retries):
            if not self._lock.locked():
                await self._lock.acquire()
                break
            await asyncio.sleep(self.lock_retry_delay)
        else:
            raise LockTimeout(
                "Session store is busy",
                details={"retries": self.lock_retries, "delay": self.lock_retry_delay},
            )
        try:
            yield
        finally:
            self._lock.release()

    async def _load(self) -> dict[str, SessionRecord]:
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return {}
        except UnicodeDecodeError as e:
            raise StorageError("Session store is corrupted", details=str(e)) from e
        except OSError as e:
            raise StorageError("Failed to read session store", details=str(e)) from e

        if not raw.strip():
            return {}
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError("Session store is corrupted", details=str(e)) from e

        # older documents were a bare list of sessions
        if isinstance(document, list):
            if not all(isinstance(item, dict) for item in document):
                raise StorageError("Session store is corrupted", details="non-object session entry")
            entries = {item["id"]: item for item in document if item.get("id")}
        elif isinstance(document, dict):
            entries = document.get("sessions", {})
        else:
            raise StorageError(
                "Session store is corrupted",
                details=f"unexpected document type {type(document).__name__}",
            )
        if not isinstance(entries, dict):
            raise StorageError("Session store is corrupted", details="sessions is not an object")
        try:
            return {
                session_id: SessionRecord.model_validate(entry)
                for session_id, entry in entries.items()
            }
        except PydanticValidationError as e:
            raise StorageError("Session store is corrupted", details=str(e)) from e

    async def _save(self, records: dict[str, SessionRecord]) -> None:
        document = {
            "sessions": {
                session_id: record.model_dump(mode="json", by_alias=True)
                for session_id, record in records.items()
            }
        }
        temp_path = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, indent=2, ensure_ascii=False))
            await aiofiles.os.replace(temp_path, self.path)
        except OSError as e:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise StorageError("Failed to write session store", details=str(e)) from e

    async def upsert(self, record: SessionRecord) -> SessionRecord:
        async with self._write_lock():
            records = await self._load()
            existing = records.get(record.id)
            created_at = existing.created_at if existing else None
            stored = record.model_copy(
                update={"created_at": created_at or datetime.now(timezone.utc)}
            )
            records[record.id] = stored
            await self._save(records)
        return stored

    async def get_by_id(self, session_id: str) -> SessionRecord:
        records = await self._load()
        if session_id not in records:
            raise NotFound("Session not found")
        return records[session_id]

    async def list_all(self) -> List[SessionRecord]:
        records = await self._load()
        return sort_newest_first(records.values())

    async def delete_by_id(self, session_id: str) -> SessionRecord:
        async with self._write_lock():
            records = await self._load()
            record = records.pop(session_id, None)
            if record is None:
                raise NotFound("Session not found")
            await self._save(records)
        return record

    async def count(self) -> int:
        return len(await self._load())
