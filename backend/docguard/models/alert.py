import json

from sqlalchemy import Column, Integer, Text
from docguard.database import Base


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Text, primary_key=True)
    severity = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    details = Column(Text, nullable=False, default="{}")
    created_at = Column(Text, nullable=False)
    resolved_at = Column(Text)
    resolved_by = Column(Text)
    resolution_note = Column(Text)

    @property
    def details_data(self) -> dict:
        return json.loads(self.details or "{}")


class HealthCheck(Base):
    __tablename__ = "health_checks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(Text, nullable=False)
    total_documents = Column(Integer, nullable=False)
    at_risk = Column(Integer, nullable=False)
    failed = Column(Integer, nullable=False)
    created_at = Column(Text, nullable=False)
