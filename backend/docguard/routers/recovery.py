from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from docguard.database import get_db
from docguard.dependencies import get_reliability_service
from docguard.schemas.recovery import RecoveryLogResponse, RecoveryResponse, RecoveryStatsResponse
from docguard.services.recovery_service import list_recovery_logs, recovery_stats
from docguard.services.reliability_service import ReliabilityService

router = APIRouter(prefix="/recovery", tags=["recovery"])


@router.post("/run", response_model=RecoveryResponse)
def recover_missing_documents(
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    return RecoveryResponse(**service.recover_missing_documents(db))


@router.get("/logs", response_model=list[RecoveryLogResponse])
def recovery_logs(
    limit: int = Query(50, ge=1, le=500),
    document_id: str | None = Query(None),
    db: Session = Depends(get_db),
):
    rows = list_recovery_logs(db, limit=limit, document_id=document_id)
    return [
        RecoveryLogResponse(
            id=r.id,
            document_id=r.document_id,
            application_id=r.application_id,
            file_name=r.file_name,
            status=r.status,
            strategy=r.strategy,
            old_path=r.old_path,
            new_path=r.new_path,
            details=r.details,
            created_at=r.created_at,
        )
        for r in rows
    ]


@router.get("/stats", response_model=RecoveryStatsResponse)
def get_recovery_stats(db: Session = Depends(get_db)):
    return RecoveryStatsResponse(**recovery_stats(db))
