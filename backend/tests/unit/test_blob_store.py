
import pytest
from unittest.mock import patch
from gait_recorder.core.errors import NotFound, PayloadTooLarge, StorageError
from gait_recorder.services.blob_store import BlobStore, infer_extension, media_type_for
from pathlib import Path


@pytest.mark.asyncio
async def test_put_writes_stream(blob_store, upload_factory):
    blob = await blob_store.put("sess-1", upload_factory(b"webm-bytes"), filename="sess-1.webm")

    assert blob.path == blob_store.root / "sess-1.webm"
    assert blob.filename == "sess-1.webm"
    assert blob.size == len(b"webm-bytes")
    assert blob.path.read_bytes() == b"webm-bytes"


@pytest.mark.asyncio
async def test_put_overwrites_same_id(blob_store, upload_factory):
    await blob_store.put("sess-1", upload_factory(b"first"), filename="a.webm")
    blob = await blob_store.put("sess-1", upload_factory(b"second take"), filename="b.webm")

    assert blob.path.read_bytes() == b"second take"
    # only the final file, no leftover partials
    assert [p.name for p in blob_store.root.iterdir()] == ["sess-1.webm"]


@pytest.mark.asyncio
async def test_put_rejects_oversized_stream(uploads_dir, upload_factory):
    store = BlobStore(uploads_dir, max_bytes=8)

    with pytest.raises(PayloadTooLarge):
        await store.put("big", upload_factory(b"0123456789"))

    assert list(uploads_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_put_disk_failure(blob_store, upload_factory):
    with patch("aiofiles.os.replace", side_effect=OSError("Disk full")):
        with pytest.raises(StorageError) as exc:
            await blob_store.put("sess-1", upload_factory(b"data"))

    assert "Disk full" in exc.value.details
    assert list(blob_store.root.iterdir()) == []


def test_infer_extension():
    assert infer_extension("clip.MP4", None) == ".mp4"
    assert infer_extension("blob", "video/webm;codecs=vp9") == ".webm"
    assert infer_extension(None, "video/quicktime") == ".mov"
    assert infer_extension(None, "application/octet-stream") == ".webm"
    assert infer_extension(None, None) == ".webm"


def test_media_type_for():
    assert media_type_for(Path("a.mp4")) == "video/mp4"
    assert media_type_for(Path("a.webm")) == "video/webm"
    assert media_type_for(Path("a.bin")) == "video/webm"


@pytest.mark.asyncio
async def test_get_missing_file(blob_store):
    with pytest.raises(NotFound):
        await blob_store.get(blob_store.root / "gone.webm")


@pytest.mark.asyncio
async def test_delete(blob_store, upload_factory):
    blob = await blob_store.put("sess-1", upload_factory(b"data"))

    assert await blob_store.delete(blob.path) is True
    assert not blob.path.exists()
    # already gone is not an error
    assert await blob_store.delete(blob.path) is False


@pytest.mark.asyncio
async def test_delete_os_error(blob_store, upload_factory):
    blob = await blob_store.put("sess-1", upload_factory(b"data"))

    with patch("aiofiles.os.remove", side_effect=PermissionError("Permission denied")):
        with pytest.raises(StorageError):
            await blob_store.delete(blob.path)
