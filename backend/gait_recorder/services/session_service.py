import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from gait_recorder.constants import ASSESSMENTS
from gait_recorder.core.errors import NotFound, StorageError, ValidationError
from gait_recorder.core.logger import get_logger
from gait_recorder.schemas.session import SessionMetadata, SessionPublic, SessionRecord
from gait_recorder.services.blob_store import AsyncReadable, BlobStore, media_type_for
from gait_recorder.services.record_store import RecordStore

logger = get_logger(__name__)

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


@dataclass
class VideoBlob:
    path: Path
    media_type: str
    filename: str


def parse_duration(value: int | str | None) -> int:
    """Duration in ms as sent by the client; unparsable values count as 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        duration = int(value)
    except (TypeError, ValueError):
        return 0
    if duration < 0:
        raise ValidationError("durationMs must not be negative", details={"durationMs": duration})
    return duration


class SessionService:
    """Keeps each session's record and its video file together."""

    def __init__(
        self,
        blob_store: BlobStore,
        record_store: RecordStore,
        require_patient_id: bool = True,
    ):
        self.blob_store = blob_store
        self.record_store = record_store
        self.require_patient_id = require_patient_id

    def _validate(self, metadata: SessionMetadata) -> SessionMetadata:
        session_id = (metadata.id or "").strip() or str(uuid.uuid4())
        if not SESSION_ID_PATTERN.match(session_id):
            raise ValidationError("Invalid sessionId", details={"sessionId": session_id})

        patient_id = (metadata.patient_id or "").strip()
        if not patient_id:
            if self.require_patient_id:
                raise ValidationError("patientId is required")
            logger.warning(f"Session {session_id} uploaded without patientId")

        if metadata.assessment and metadata.assessment not in ASSESSMENTS:
            logger.warning(f"Session {session_id} has unknown assessment {metadata.assessment!r}")

        return metadata.model_copy(
            update={
                "id": session_id,
                "patient_id": patient_id,
                "duration_ms": parse_duration(metadata.duration_ms),
            }
        )

    async def upload(
        self,
        metadata: SessionMetadata,
        video: AsyncReadable,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> str:
        """Store the video, then record the session pointing at it.

        Returns:
            str: The session id, synthesized if the client sent none.
        """
        metadata = self._validate(metadata)
        previous_path = await self._stored_filepath(metadata.id)
        blob = await self.blob_store.put(metadata.id, video, filename, content_type)

        record = SessionRecord(
            id=metadata.id,
            patient_id=metadata.patient_id,
            assessment=metadata.assessment,
            start_time=metadata.start_time,
            end_time=metadata.end_time,
            duration_ms=metadata.duration_ms,
            filename=blob.filename,
            filepath=blob.path.as_posix(),
            size=blob.size,
        )
        try:
            await self.record_store.upsert(record)
        except StorageError:
            # no rollback across the two stores; the file stays on disk
            logger.error(f"Session {record.id} not recorded, video orphaned at {blob.path}")
            raise

        if previous_path and previous_path != record.filepath:
            await self._delete_blob(previous_path, record.id)

        try:
            total = await self.record_store.count()
        except StorageError as e:
            total = "unknown"
            logger.warning(f"Could not count sessions after saving {record.id}: {e.message}")
        logger.info(f"Session {record.id} saved for patient {record.patient_id!r}, total sessions: {total}")
        return record.id

    async def _stored_filepath(self, session_id: str) -> Optional[str]:
        try:
            return (await self.record_store.get_by_id(session_id)).filepath
        except NotFound:
            return None

    async def _delete_blob(self, path: str, session_id: str) -> None:
        try:
            await self.blob_store.delete(path)
        except StorageError as e:
            logger.error(f"Error deleting video {path} for session {session_id}: {e.details}")

    async def list_sessions(self) -> List[SessionPublic]:
        records = await self.record_store.list_all()
        return [record.to_public() for record in records]

    async def get_session(self, session_id: str) -> SessionPublic:
        record = await self.record_store.get_by_id(session_id)
        return record.to_public()

    async def fetch_video(self, session_id: str) -> VideoBlob:
        try:
            record = await self.record_store.get_by_id(session_id)
        except NotFound:
            raise NotFound("Video not found")
        if not record.filepath:
            raise NotFound("Video not found")

        path = await self.blob_store.get(record.filepath)
        return VideoBlob(
            path=path,
            media_type=media_type_for(path),
            filename=record.filename or path.name,
        )

    async def delete(self, session_id: str) -> None:
        # record first, so playback stops resolving before the file goes away
        record = await self.record_store.delete_by_id(session_id)
        logger.info(f"Session {session_id} deleted")

        if record.filepath:
            await self._delete_blob(record.filepath, session_id)

    async def count(self) -> int:
        return await self.record_store.count()
