from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from sqlalchemy.sql import func
from prizma.database import Base


class QueuedUpload(Base):
    """
    A pending receipt submission.

    Status moves pending -> in_flight -> (row deleted | failed | error).
    'failed' entries are retried after next_attempt_at; 'error' entries
    exhausted their retries and are kept for display.
    """
    __tablename__ = "upload_queue"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(50), nullable=False, default="receipt")
    payload = Column(JSON, nullable=False)

    status = Column(String(20), nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    next_attempt_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
