import json
import logging
import time
import uuid
from typing import Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from docguard.models.alert import Alert, HealthCheck
from docguard.models.retry import RetryLogEntry
from docguard.services.audit_service import RISK_HIGH, AuditFinding, AuditReport
from docguard.services.retry_queue import format_epoch

logger = logging.getLogger("docguard.health")

HEALTHY = "HEALTHY"
WARNING = "WARNING"
CRITICAL = "CRITICAL"

BACKUP_JOB_TYPE = "object_store_backup"


class HealthReporter:
    def __init__(
        self,
        *,
        finding_threshold: int = 10,
        upload_failure_threshold: int = 0,
        window_hours: int = 24,
        clock: Callable[[], float] = time.time,
    ):
        self.finding_threshold = finding_threshold
        self.upload_failure_threshold = upload_failure_threshold
        self.window_hours = window_hours
        self.clock = clock

    def _window_start(self) -> str:
        return format_epoch(self.clock() - self.window_hours * 3600)

    def finding_volume(self, db: Session, current: int = 0) -> int:
        """Peak non-low finding count across health checks in the window."""
        peak = (
            db.query(func.max(HealthCheck.at_risk + HealthCheck.failed))
            .filter(HealthCheck.created_at >= self._window_start())
            .scalar()
        )
        return max(current, peak or 0)

    def upload_failures(self, db: Session) -> int:
        return (
            db.query(func.count(RetryLogEntry.id))
            .filter(
                RetryLogEntry.job_type == BACKUP_JOB_TYPE,
                RetryLogEntry.terminal.is_(True),
                RetryLogEntry.success.is_(False),
                RetryLogEntry.created_at >= self._window_start(),
            )
            .scalar()
        ) or 0

    def evaluate(self, db: Session, report: AuditReport) -> dict:
        volume = self.finding_volume(db, report.at_risk + report.failed)
        failures = self.upload_failures(db)

        reasons = []
        if report.failed:
            reasons.append(f"{report.failed} document(s) missing on every tier")
        if volume > self.finding_threshold:
            reasons.append(
                f"{volume} findings in the last {self.window_hours}h exceeds threshold {self.finding_threshold}"
            )
        if failures > self.upload_failure_threshold:
            reasons.append(
                f"{failures} backup upload(s) failed terminally in the last {self.window_hours}h"
            )

        if report.failed:
            status = CRITICAL
        elif reasons:
            status = WARNING
        else:
            status = HEALTHY

        now = format_epoch(self.clock())
        db.add(HealthCheck(
            status=status,
            total_documents=report.total_documents,
            at_risk=report.at_risk,
            failed=report.failed,
            created_at=now,
        ))
        db.commit()

        alert = None
        if status != HEALTHY:
            alert = self.raise_alert(
                db,
                status,
                "; ".join(reasons),
                {
                    "total_documents": report.total_documents,
                    "at_risk": report.at_risk,
                    "failed": report.failed,
                    "high_risk_documents": [
                        f.document_id for f in report.findings if f.risk_level == RISK_HIGH
                    ],
                },
            )

        return {
            "status": status,
            "reasons": reasons,
            "finding_volume": volume,
            "upload_failures": failures,
            "alert_id": alert.id if alert else None,
            "open_alerts": self.count_open_alerts(db),
            "checked_at": now,
        }

    def raise_alert(self, db: Session, severity: str, message: str, details: dict | None = None) -> Alert:
        if severity not in (WARNING, CRITICAL):
            raise ValueError(f"Invalid alert severity {severity!r}")
        existing = (
            db.query(Alert)
            .filter(Alert.severity == severity, Alert.message == message, Alert.resolved_at.is_(None))
            .first()
        )
        if existing:
            return existing

        alert = Alert(
            id=str(uuid.uuid4()),
            severity=severity,
            message=message,
            details=json.dumps(details or {}, sort_keys=True),
            created_at=format_epoch(self.clock()),
        )
        db.add(alert)
        db.commit()
        db.refresh(alert)
        logger.warning("%s alert raised: %s", severity, message)
        return alert

    def escalate_unrecovered(self, db: Session, findings: list[AuditFinding]) -> Alert | None:
        if not findings:
            return None
        severity = CRITICAL if any(f.risk_level == RISK_HIGH for f in findings) else WARNING
        return self.raise_alert(
            db,
            severity,
            f"{len(findings)} missing document(s) could not be recovered automatically",
            {"document_ids": sorted(f.document_id for f in findings)},
        )

    def list_alerts(self, db: Session, *, unresolved_only: bool = False, limit: int = 100) -> list[Alert]:
        query = db.query(Alert)
        if unresolved_only:
            query = query.filter(Alert.resolved_at.is_(None))
        return query.order_by(Alert.created_at.desc(), Alert.id).limit(limit).all()

    def count_open_alerts(self, db: Session) -> int:
        return db.query(func.count(Alert.id)).filter(Alert.resolved_at.is_(None)).scalar() or 0

    def resolve_alert(self, db: Session, alert_id: str, *, resolved_by: str, note: str | None = None) -> Alert:
        alert = db.query(Alert).filter(Alert.id == alert_id).first()
        if alert is None:
            raise LookupError(f"Alert {alert_id} not found")
        if alert.resolved_at is None:
            alert.resolved_at = format_epoch(self.clock())
            alert.resolved_by = resolved_by
            alert.resolution_note = note
            db.commit()
            db.refresh(alert)
            logger.info("Alert %s resolved by %s", alert_id, resolved_by)
        return alert
