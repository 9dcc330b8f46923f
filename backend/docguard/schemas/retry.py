from pydantic import BaseModel


class RetryJobStatus(BaseModel):
    id: str
    application_id: str
    job_type: str
    attempt: int
    max_attempts: int
    scheduled_at: str
    backoff_ms: int
    last_error: str | None


class QueueStatusResponse(BaseModel):
    total_jobs: int
    is_processing: bool
    jobs: list[RetryJobStatus]


class RetryJobRequest(BaseModel):
    application_id: str
    job_type: str = "object_store_backup"


class RetryJobResponse(BaseModel):
    application_id: str
    job_type: str
    success: bool


class RetryLogResponse(BaseModel):
    id: int
    job_id: str
    application_id: str
    job_type: str
    attempt: int
    success: bool
    terminal: bool
    error_message: str | None
    backoff_ms: int | None
    created_at: str
