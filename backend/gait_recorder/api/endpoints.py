from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse
from pydantic import ValidationError as PydanticValidationError

from gait_recorder.api.dependencies import get_session_service
from gait_recorder.core.errors import GaitRecorderError, ValidationError
from gait_recorder.core.logger import get_logger
from gait_recorder.schemas.recorder import RecorderCommand
from gait_recorder.schemas.session import (
    DeleteResponse,
    SessionMetadata,
    SessionPublic,
    StatusResponse,
    UploadResponse,
)
from gait_recorder.services.recorder import RecorderStateError, VideoRecorder
from gait_recorder.services.session_service import SessionService
import json

router = APIRouter(prefix="/api")
logger = get_logger(__name__)


@router.post("/upload", response_model=UploadResponse)
async def upload_video(
    video: Optional[UploadFile] = File(None),
    session_id: Optional[str] = Form(None, alias="sessionId"),
    patient_id: Optional[str] = Form(None, alias="patientId"),
    assessment: Optional[str] = Form(None),
    start_time: Optional[str] = Form(None, alias="startTime"),
    end_time: Optional[str] = Form(None, alias="endTime"),
    duration_ms: Optional[str] = Form(None, alias="durationMs"),
    service: SessionService = Depends(get_session_service),
) -> UploadResponse:
    """Store an uploaded recording and its session metadata.

    Args:
        video (UploadFile | None): The encoded video part.
        session_id (str | None): Client generated session id; synthesized if absent.
        patient_id (str | None): Patient identifier.
        assessment (str | None): One of good, issue, poor.
        start_time (str | None): ISO-8601 start of the recording.
        end_time (str | None): ISO-8601 end of the recording.
        duration_ms (str | None): Client measured duration in milliseconds.
        service (SessionService, optional): Defaults to Depends(get_session_service).
    Returns:
        UploadResponse: The stored session id.
    """
    if video is None:
        raise ValidationError("No video file uploaded")

    metadata = SessionMetadata(
        id=session_id,
        patient_id=patient_id,
        assessment=assessment,
        start_time=start_time,
        end_time=end_time,
        duration_ms=duration_ms,
    )
    logger.info(f"Upload received: session={session_id} patient={patient_id!r} file={video.filename}")
    try:
        stored_id = await service.upload(
            metadata, video, filename=video.filename, content_type=video.content_type
        )
    finally:
        await video.close()
    return UploadResponse(session_id=stored_id)


@router.get("/sessions", response_model=List[SessionPublic])
async def list_sessions(
    service: SessionService = Depends(get_session_service),
) -> List[SessionPublic]:
    """List all sessions, newest first, without storage paths."""
    return await service.list_sessions()


@router.get("/sessions/{session_id}", response_model=SessionPublic)
async def get_session(
    session_id: str, service: SessionService = Depends(get_session_service)
) -> SessionPublic:
    return await service.get_session(session_id)


@router.get("/video/{session_id}")
async def get_video(
    session_id: str, service: SessionService = Depends(get_session_service)
) -> FileResponse:
    """Stream the stored video of a session.

    Args:
        session_id (str): The session id.
    Returns:
        FileResponse: The video, served inline with its stored content type.
    """
    blob = await service.fetch_video(session_id)
    return FileResponse(
        blob.path,
        media_type=blob.media_type,
        filename=blob.filename,
        content_disposition_type="inline",
    )


@router.delete("/sessions/{session_id}", response_model=DeleteResponse)
async def delete_session(
    session_id: str, service: SessionService = Depends(get_session_service)
) -> DeleteResponse:
    """Delete a session record and its video file.

    Args:
        session_id (str): The session id.
    Returns:
        DeleteResponse: The deletion status.
    """
    await service.delete(session_id)
    return DeleteResponse()


@router.get("/status", response_model=StatusResponse)
async def server_status(
    service: SessionService = Depends(get_session_service),
) -> StatusResponse:
    """Operational snapshot, used to confirm several devices share one server."""
    return StatusResponse(
        server_time=datetime.now(timezone.utc),
        total_sessions=await service.count(),
        storage_backend=service.record_store.backend,
        message="All devices connected to this server share the same session store",
    )


@router.websocket("/ws/record")
async def record_websocket(
    websocket: WebSocket, service: SessionService = Depends(get_session_service)
):
    """Receive a recording as a stream of binary chunks.

    Text frames carry commands (start_record with the session metadata,
    stop_record), binary frames carry encoded video.
    """
    await websocket.accept()
    recorder = VideoRecorder(service)
    logger.info("Recorder WebSocket connected")

    try:
        while True:
            message = await websocket.receive()

            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            if message.get("bytes"):
                if not recorder.is_recording:
                    await websocket.send_json({"type": "error", "error": "Not recording"})
                    continue
                try:
                    received = await recorder.write_chunk(message["bytes"])
                except GaitRecorderError as e:
                    await websocket.send_json(
                        {"type": "error", "error": e.message, "details": e.details}
                    )
                    continue
                await websocket.send_json({"type": "chunk_ack", "bytes": received})

            elif message.get("text"):
                try:
                    cmd = RecorderCommand(**json.loads(message["text"]))
                except (json.JSONDecodeError, TypeError, PydanticValidationError) as e:
                    logger.error(f"Error parsing recorder command: {e}")
                    await websocket.send_json({"type": "error", "error": "Invalid command"})
                    continue

                try:
                    if cmd.action == "start_record":
                        recorder.start(
                            SessionMetadata(
                                id=cmd.sessionId,
                                patient_id=cmd.patientId,
                                assessment=cmd.assessment,
                                start_time=cmd.startTime,
                                end_time=cmd.endTime,
                                duration_ms=cmd.durationMs,
                            ),
                            filename=cmd.filename,
                            content_type=cmd.contentType,
                        )
                        await websocket.send_json({"type": "recording_started"})

                    elif cmd.action == "stop_record":
                        if recorder.is_recording:
                            recorder.update_metadata(
                                end_time=cmd.endTime, duration_ms=cmd.durationMs
                            )
                        stored_id = await recorder.stop()
                        await websocket.send_json(
                            {"type": "recording_saved", "sessionId": stored_id}
                        )

                    else:
                        await websocket.send_json(
                            {"type": "error", "error": f"Unknown action {cmd.action!r}"}
                        )
                except RecorderStateError as e:
                    await websocket.send_json({"type": "error", "error": str(e)})
                except GaitRecorderError as e:
                    await websocket.send_json(
                        {"type": "error", "error": e.message, "details": e.details}
                    )

    except WebSocketDisconnect:
        logger.info("Recorder WebSocket disconnected")
        await recorder.discard()
