from sqlalchemy import Boolean, Column, Integer, Text
from docguard.database import Base


class Document(Base):
    __tablename__ = "documents"

    id = Column(Text, primary_key=True)
    application_id = Column(Text, nullable=False)
    file_name = Column(Text, nullable=False)
    document_type = Column(Text, nullable=False)
    file_size_bytes = Column(Integer)
    mime_type = Column(Text)
    disk_path = Column(Text)
    object_store_key = Column(Text)
    checksum_sha256 = Column(Text)
    backup_status = Column(Text, nullable=False, default="pending")
    verified = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)
