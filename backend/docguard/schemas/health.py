from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    reasons: list[str]
    finding_volume: int
    upload_failures: int
    alert_id: str | None
    open_alerts: int
    checked_at: str
    audit: dict
    retry_queue: dict


class AlertResponse(BaseModel):
    id: str
    severity: str
    message: str
    details: dict
    created_at: str
    resolved_at: str | None
    resolved_by: str | None
    resolution_note: str | None


class ResolveAlertRequest(BaseModel):
    resolved_by: str
    note: str | None = None
