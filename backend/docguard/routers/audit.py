from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from docguard.database import get_db
from docguard.dependencies import get_reliability_service
from docguard.schemas.audit import AuditFindingResponse, AuditReportResponse, BackfillResponse, OrphanFileResponse
from docguard.services.audit_service import AuditReport, export_audit_csv
from docguard.services.reliability_service import ReliabilityService

router = APIRouter(prefix="/audit", tags=["audit"])


def _report_to_response(report: AuditReport) -> AuditReportResponse:
    return AuditReportResponse(
        total_documents=report.total_documents,
        healthy=report.healthy,
        at_risk=report.at_risk,
        failed=report.failed,
        findings=[AuditFindingResponse(**f.as_dict()) for f in report.findings],
        orphans=[OrphanFileResponse(tier=o.tier, key=o.key, size_bytes=o.size_bytes) for o in report.orphans],
        generated_at=report.generated_at,
    )


@router.get("", response_model=AuditReportResponse)
def audit_all(
    deep: bool = Query(False),
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    return _report_to_response(service.audit_all(db, deep=deep))


@router.get("/applications/{application_id}", response_model=AuditReportResponse)
def audit_application(
    application_id: str,
    deep: bool = Query(False),
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    return _report_to_response(service.audit_application(db, application_id, deep=deep))


@router.get("/export/csv")
def audit_csv(
    deep: bool = Query(False),
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    csv_data = export_audit_csv(service.audit_all(db, deep=deep))
    return Response(
        content=csv_data,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="document_audit.csv"'},
    )


@router.post("/backfill-checksums", response_model=BackfillResponse)
def backfill_checksums(
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    return BackfillResponse(**service.backfill_checksums(db))
