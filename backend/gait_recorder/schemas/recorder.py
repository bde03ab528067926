from typing import Optional

from pydantic import BaseModel


class RecorderCommand(BaseModel):
    action: str
    sessionId: Optional[str] = None
    patientId: Optional[str] = None
    assessment: Optional[str] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    durationMs: Optional[str] = None
    filename: Optional[str] = None
    contentType: Optional[str] = None
