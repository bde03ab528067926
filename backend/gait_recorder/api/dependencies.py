from pathlib import Path

from fastapi import Depends
from sqlalchemy.orm import Session

from gait_recorder.core.config import settings
from gait_recorder.db.base import get_db
from gait_recorder.services.blob_store import BlobStore
from gait_recorder.services.record_store import JsonRecordStore, RecordStore, SqlRecordStore
from gait_recorder.services.session_service import SessionService

blob_store = BlobStore(Path(settings.UPLOADS_DIR), max_bytes=settings.MAX_UPLOAD_BYTES)

# A single instance, so its write lock covers every request in this process.
json_record_store = (
    JsonRecordStore(
        Path(settings.SESSIONS_FILE),
        lock_retries=settings.LOCK_RETRIES,
        lock_retry_delay=settings.LOCK_RETRY_DELAY,
    )
    if settings.STORAGE_BACKEND == "json"
    else None
)


def get_blob_store() -> BlobStore:
    return blob_store


def get_record_store(db: Session = Depends(get_db)) -> RecordStore:
    if json_record_store is not None:
        return json_record_store
    return SqlRecordStore(db)


def get_session_service(
    blobs: BlobStore = Depends(get_blob_store),
    records: RecordStore = Depends(get_record_store),
) -> SessionService:
    return SessionService(blobs, records, require_patient_id=settings.REQUIRE_PATIENT_ID)
