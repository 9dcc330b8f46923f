from pydantic import BaseModel


class AuditFindingResponse(BaseModel):
    document_id: str
    application_id: str
    file_name: str
    disk_path: str | None
    object_store_key: str | None
    missing_on_disk: bool
    missing_in_store: bool
    checksum_mismatch: bool
    risk_level: str
    errors: list[str]


class OrphanFileResponse(BaseModel):
    tier: str
    key: str
    size_bytes: int | None


class AuditReportResponse(BaseModel):
    total_documents: int
    healthy: int
    at_risk: int
    failed: int
    findings: list[AuditFindingResponse]
    orphans: list[OrphanFileResponse]
    generated_at: str


class BackfillResponse(BaseModel):
    processed: int
    updated: int
    unverifiable: int
    details: list[dict]
