from sqlalchemy import Column, Integer, Text
from docguard.database import Base


class RecoveryLogEntry(Base):
    __tablename__ = "recovery_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Text, nullable=False)
    application_id = Column(Text, nullable=False)
    file_name = Column(Text)
    status = Column(Text, nullable=False)
    strategy = Column(Text)
    old_path = Column(Text)
    new_path = Column(Text)
    details = Column(Text)
    created_at = Column(Text, nullable=False)
