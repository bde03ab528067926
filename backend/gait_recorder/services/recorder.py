import enum
import uuid
from typing import Optional

import aiofiles
import aiofiles.os

from gait_recorder.core.errors import PayloadTooLarge
from gait_recorder.core.logger import get_logger
from gait_recorder.schemas.session import SessionMetadata
from gait_recorder.services.session_service import SessionService

logger = get_logger(__name__)


class RecorderState(str, enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"


class RecorderStateError(Exception):
    pass


class VideoRecorder:
    """Collects streamed video chunks for one session and hands them to the service."""

    def __init__(self, service: SessionService):
        self.service = service
        self.state = RecorderState.IDLE
        self.metadata: Optional[SessionMetadata] = None
        self.filename: Optional[str] = None
        self.content_type: Optional[str] = None
        self.bytes_received = 0
        self.file_handle = None
        self.chunk_path = None

    @property
    def is_recording(self) -> bool:
        return self.state == RecorderState.RECORDING

    def start(
        self,
        metadata: SessionMetadata,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ):
        if self.state != RecorderState.IDLE:
            raise RecorderStateError(f"Cannot start while {self.state.value}")

        self.metadata = metadata
        self.filename = filename
        self.content_type = content_type
        self.bytes_received = 0
        # Chunks are appended to a scratch file in the blob directory, then streamed into the store on stop.
        self.chunk_path = self.service.blob_store.root / f".rec_{uuid.uuid4().hex}.chunks"
        self.file_handle = None
        self.state = RecorderState.RECORDING

    def update_metadata(self, **fields):
        """Fill in fields only known once capture ends (endTime, durationMs)."""
        if self.metadata is None:
            return
        changes = {key: value for key, value in fields.items() if value is not None}
        self.metadata = self.metadata.model_copy(update=changes)

    async def write_chunk(self, chunk: bytes) -> int:
        if not self.is_recording:
            return 0

        limit = self.service.blob_store.max_bytes
        if self.bytes_received + len(chunk) > limit:
            await self.discard()
            raise PayloadTooLarge("Video exceeds upload limit", details={"maxBytes": limit})

        if self.file_handle is None:
            self.file_handle = await aiofiles.open(self.chunk_path, "wb")

        await self.file_handle.write(chunk)
        self.bytes_received += len(chunk)
        return self.bytes_received

    async def stop(self) -> str:
        """Finish the recording and upload it.

        Returns:
            str: The stored session id.
        """
        if not self.is_recording:
            raise RecorderStateError("Not recording")

        self.state = RecorderState.FINALIZING
        try:
            if self.file_handle:
                await self.file_handle.close()
                self.file_handle = None
            else:
                # nothing was written, still create the (empty) chunk file
                async with aiofiles.open(self.chunk_path, "wb"):
                    pass

            async with aiofiles.open(self.chunk_path, "rb") as source:
                session_id = await self.service.upload(
                    self.metadata, source, self.filename, self.content_type
                )
            logger.info(f"Recording finalized for session {session_id} ({self.bytes_received} bytes)")
            return session_id
        finally:
            await self._cleanup()

    async def discard(self):
        if self.state == RecorderState.IDLE:
            return
        logger.info(f"Discarding recording after {self.bytes_received} bytes")
        await self._cleanup()

    async def _cleanup(self):
        if self.file_handle:
            await self.file_handle.close()
            self.file_handle = None
        if self.chunk_path is not None:
            try:
                await aiofiles.os.remove(self.chunk_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"Error deleting chunk file {self.chunk_path}: {e}")
        self.chunk_path = None
        self.metadata = None
        self.state = RecorderState.IDLE
