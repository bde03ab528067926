from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class SessionMetadata(CamelModel):
    """Client supplied fields of an upload, before validation."""

    id: Optional[str] = None
    patient_id: Optional[str] = None
    assessment: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration_ms: Union[int, str, None] = None


class SessionPublic(CamelModel):
    id: str
    patient_id: str = ""
    assessment: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration_ms: int = 0
    size: int = 0


class SessionRecord(SessionPublic):
    filename: Optional[str] = None
    filepath: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_public(self) -> SessionPublic:
        return SessionPublic.model_validate(self.model_dump())


class UploadResponse(CamelModel):
    success: bool = True
    session_id: str
    message: str = "Video uploaded successfully"


class DeleteResponse(CamelModel):
    success: bool = True
    message: str = "Session deleted successfully"


class HealthResponse(CamelModel):
    status: str = "ok"
    timestamp: datetime


class StatusResponse(CamelModel):
    status: str = "ok"
    server_time: datetime
    total_sessions: int = Field(ge=0)
    storage_backend: str
    message: str
