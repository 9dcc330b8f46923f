from pydantic import BaseModel


class RecoveryResponse(BaseModel):
    total_processed: int
    recovered: int
    still_missing: int
    details: list[dict]


class RecoveryLogResponse(BaseModel):
    id: int
    document_id: str
    application_id: str
    file_name: str | None
    status: str
    strategy: str | None
    old_path: str | None
    new_path: str | None
    details: str | None
    created_at: str


class RecoveryStatsResponse(BaseModel):
    missing_detected: int
    recovered: int
    recovery_failed: int
    total_events: int
