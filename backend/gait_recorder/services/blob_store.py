import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import aiofiles
import aiofiles.os

from gait_recorder.constants import (
    CHUNK_SIZE,
    DEFAULT_EXTENSION,
    DEFAULT_MEDIA_TYPE,
    MAX_UPLOAD_BYTES,
    VIDEO_MEDIA_TYPES,
)
from gait_recorder.core.errors import NotFound, PayloadTooLarge, StorageError
from gait_recorder.core.logger import get_logger

logger = get_logger(__name__)

_EXTENSIONS_BY_TYPE = {media_type: ext for ext, media_type in VIDEO_MEDIA_TYPES.items()}


class AsyncReadable(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


@dataclass
class StoredBlob:
    path: Path
    filename: str
    size: int


def infer_extension(filename: Optional[str], content_type: Optional[str]) -> str:
    """Pick the stored extension from the client file name, then the content type."""
    if filename:
        suffix = Path(filename).suffix.lower()
        if suffix and suffix[1:].isalnum():
            return suffix
    if content_type:
        # "video/webm;codecs=vp9" -> "video/webm"
        base_type = content_type.split(";", 1)[0].strip().lower()
        if base_type in _EXTENSIONS_BY_TYPE:
            return _EXTENSIONS_BY_TYPE[base_type]
    return DEFAULT_EXTENSION


def media_type_for(path: Path) -> str:
    return VIDEO_MEDIA_TYPES.get(path.suffix.lower(), DEFAULT_MEDIA_TYPE)


class BlobStore:
    """Video files on local disk, one per session id."""

    def __init__(self, root: Path, max_bytes: int = MAX_UPLOAD_BYTES):
        self.root = Path(root)
        self.max_bytes = max_bytes
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, session_id: str, extension: str = DEFAULT_EXTENSION) -> Path:
        return self.root / f"{session_id}{extension}"

    async def put(
        self,
        session_id: str,
        source: AsyncReadable,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> StoredBlob:
        """Stream ``source`` to disk under a name derived from ``session_id``.

        The bytes go to a temporary file first and replace the final file only
        once complete, so an overwrite never leaves a truncated video behind.

        Raises:
            PayloadTooLarge: the stream exceeded ``max_bytes``.
            StorageError: the file could not be written.
        """
        final_path = self.path_for(session_id, infer_extension(filename, content_type))
        temp_path = self.root / f".{session_id}.{uuid.uuid4().hex}.part"
        size = 0

        try:
            async with aiofiles.open(temp_path, "wb") as out:
                while True:
                    chunk = await source.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise PayloadTooLarge(
                            "Video exceeds upload limit",
                            details={"maxBytes": self.max_bytes},
                        )
                    await out.write(chunk)
            await aiofiles.os.replace(temp_path, final_path)
        except PayloadTooLarge:
            await self._discard(temp_path)
            raise
        except OSError as e:
            await self._discard(temp_path)
            raise StorageError("Failed to store video", details=str(e)) from e

        logger.info(f"Stored video for session {session_id}: {final_path.name} ({size} bytes)")
        return StoredBlob(path=final_path, filename=final_path.name, size=size)

    async def get(self, path: str | os.PathLike) -> Path:
        """Resolve a stored path, failing if the file vanished from disk."""
        file_path = Path(path)
        if not await aiofiles.os.path.isfile(file_path):
            raise NotFound("Video file not found")
        return file_path

    async def delete(self, path: str | os.PathLike) -> bool:
        """Remove a stored file. A file that is already gone counts as deleted.

        Returns:
            bool: True if a file was removed, False if there was nothing to remove.
        """
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.info(f"Video file already absent: {path}")
            return False
        except OSError as e:
            raise StorageError("Failed to delete video", details=str(e)) from e
        return True

    async def _discard(self, temp_path: Path) -> None:
        try:
            await aiofiles.os.remove(temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Error deleting partial file {temp_path}: {e}")
