from pydantic import BaseModel


class DocumentResponse(BaseModel):
    id: str
    application_id: str
    file_name: str
    document_type: str
    file_size_bytes: int | None
    mime_type: str | None
    disk_path: str | None
    object_store_key: str | None
    checksum_sha256: str | None
    backup_status: str
    verified: bool
    created_at: str
    updated_at: str


class UploadResponse(BaseModel):
    document_id: str
    backup_status: str
    disk_path: str
    checksum_sha256: str


class VerifyResponse(BaseModel):
    document_id: str
    verified: bool
    status: str
    stored_hash: str | None
    actual_hash: str | None
    source: str | None
    errors: list[str]
