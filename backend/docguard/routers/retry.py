from fastapi import APIRouter, Depends, Query

from docguard.dependencies import get_reliability_service
from docguard.schemas.retry import QueueStatusResponse, RetryJobRequest, RetryJobResponse, RetryLogResponse
from docguard.services.reliability_service import ReliabilityService

router = APIRouter(prefix="/retry-queue", tags=["retry-queue"])


@router.get("", response_model=QueueStatusResponse)
def queue_status(service: ReliabilityService = Depends(get_reliability_service)):
    return QueueStatusResponse(**service.get_queue_status())


@router.post("/retry", response_model=RetryJobResponse)
def retry_job(body: RetryJobRequest, service: ReliabilityService = Depends(get_reliability_service)):
    """Manually attempt a job now, outside the backoff schedule."""
    success = service.retry_job(body.application_id, body.job_type)
    return RetryJobResponse(application_id=body.application_id, job_type=body.job_type, success=success)


@router.get("/logs", response_model=list[RetryLogResponse])
def retry_logs(
    limit: int = Query(50, ge=1, le=500),
    application_id: str | None = Query(None),
    service: ReliabilityService = Depends(get_reliability_service),
):
    rows = service.retry_queue.get_logs(limit=limit, application_id=application_id)
    return [
        RetryLogResponse(
            id=r.id,
            job_id=r.job_id,
            application_id=r.application_id,
            job_type=r.job_type,
            attempt=r.attempt,
            success=bool(r.success),
            terminal=bool(r.terminal),
            error_message=r.error_message,
            backoff_ms=r.backoff_ms,
            created_at=r.created_at,
        )
        for r in rows
    ]
