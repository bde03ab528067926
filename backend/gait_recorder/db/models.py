
from sqlalchemy import Column, Integer, String, DateTime, func
from .base import Base


class SessionRow(Base):
    __tablename__ = "sessions"

    id = Column(String, primary_key=True, index=True)
    patient_id = Column(String, nullable=False, index=True)
    assessment = Column(String)
    start_time = Column(String, index=True)  # client ISO-8601 text, kept verbatim
    end_time = Column(String)
    duration_ms = Column(Integer, default=0)
    filename = Column(String)
    filepath = Column(String)
    size = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
