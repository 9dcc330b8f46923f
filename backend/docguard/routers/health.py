from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from docguard.database import get_db
from docguard.dependencies import get_reliability_service
from docguard.models.alert import Alert
from docguard.schemas.health import AlertResponse, HealthResponse, ResolveAlertRequest
from docguard.services.reliability_service import ReliabilityService

router = APIRouter(tags=["health"])


def _alert_to_response(alert: Alert) -> AlertResponse:
    return AlertResponse(
        id=alert.id,
        severity=alert.severity,
        message=alert.message,
        details=alert.details_data,
        created_at=alert.created_at,
        resolved_at=alert.resolved_at,
        resolved_by=alert.resolved_by,
        resolution_note=alert.resolution_note,
    )


@router.get("/health/documents", response_model=HealthResponse)
def document_health(
    deep: bool = Query(False),
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    return HealthResponse(**service.check_health(db, deep=deep))


@router.get("/alerts", response_model=list[AlertResponse])
def list_alerts(
    unresolved: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    alerts = service.reporter.list_alerts(db, unresolved_only=unresolved, limit=limit)
    return [_alert_to_response(a) for a in alerts]


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
def resolve_alert(
    alert_id: str,
    body: ResolveAlertRequest,
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    try:
        alert = service.reporter.resolve_alert(db, alert_id, resolved_by=body.resolved_by, note=body.note)
    except LookupError:
        raise HTTPException(status_code=404, detail="Alert not found")
    return _alert_to_response(alert)
