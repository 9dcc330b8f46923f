import json

from sqlalchemy import Boolean, Column, Float, Integer, Text
from docguard.database import Base


class RetryJob(Base):
    __tablename__ = "retry_jobs"

    id = Column(Text, primary_key=True)
    application_id = Column(Text, nullable=False)
    job_type = Column(Text, nullable=False)
    payload = Column(Text, nullable=False, default="{}")
    attempt = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False)
    last_error = Column(Text)
    scheduled_at = Column(Float, nullable=False)
    backoff_ms = Column(Integer, nullable=False, default=0)
    created_at = Column(Text, nullable=False)

    @property
    def payload_data(self) -> dict:
        return json.loads(self.payload or "{}")


class RetryLogEntry(Base):
    __tablename__ = "retry_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Text, nullable=False)
    application_id = Column(Text, nullable=False)
    job_type = Column(Text, nullable=False)
    attempt = Column(Integer, nullable=False)
    success = Column(Boolean, nullable=False)
    terminal = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text)
    backoff_ms = Column(Integer)
    next_scheduled_at = Column(Float)
    created_at = Column(Text, nullable=False)
