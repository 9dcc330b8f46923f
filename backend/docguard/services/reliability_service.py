import logging
import time
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from docguard.config import Settings
from docguard.services import checksum_service
from docguard.services.audit_service import AuditEngine, AuditReport
from docguard.services.document_service import DocumentService
from docguard.services.health_service import BACKUP_JOB_TYPE, HealthReporter
from docguard.services.object_store import create_object_store
from docguard.services.recovery_service import RecoveryMatcher, RecoveryService, default_strategies
from docguard.services.retry_queue import RetryQueue
from docguard.services.storage import StorageTier, create_disk_storage

logger = logging.getLogger("docguard")


class ReliabilityService:
    """Entry point for upload, audit, recovery, retry and health operations."""

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        *,
        disk: StorageTier | None = None,
        object_store: StorageTier | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.disk = disk or create_disk_storage(settings.uploads_path, settings.tier_timeout_seconds)
        self.object_store = object_store or create_object_store(settings)

        self.retry_queue = RetryQueue(
            session_factory,
            base_delay_ms=settings.retry_base_delay_ms,
            max_attempts=settings.retry_max_attempts,
            poll_interval_seconds=settings.retry_poll_interval_seconds,
            clock=clock,
        )
        self.documents = DocumentService(
            session_factory=session_factory,
            disk=self.disk,
            object_store=self.object_store,
            retry_queue=self.retry_queue,
            max_upload_bytes=settings.max_upload_bytes,
        )
        self.retry_queue.register(
            BACKUP_JOB_TYPE, self.documents.replicate, on_terminal=self.documents.mark_backup_failed
        )
        self.auditor = AuditEngine(self.disk, self.object_store)
        self.reporter = HealthReporter(
            finding_threshold=settings.alert_finding_threshold,
            upload_failure_threshold=settings.alert_upload_failure_threshold,
            window_hours=settings.alert_window_hours,
            clock=clock,
        )
        self.recovery = RecoveryService(
            auditor=self.auditor,
            disk=self.disk,
            reporter=self.reporter,
            matcher=RecoveryMatcher(default_strategies(settings.recovery_similarity_threshold)),
        )

    def upload(self, db: Session, application_id: str, content: bytes, file_name: str,
               document_type: str, mime_type: str | None = None) -> dict:
        return self.documents.upload(db, application_id, content, file_name, document_type, mime_type)

    def reupload(self, db: Session, document_id: str, content: bytes,
                 file_name: str | None = None, mime_type: str | None = None) -> dict:
        return self.documents.reupload(db, document_id, content, file_name, mime_type)

    def audit_all(self, db: Session, *, deep: bool = False) -> AuditReport:
        return self.auditor.audit_all(db, deep=deep)

    def audit_application(self, db: Session, application_id: str, *, deep: bool = False) -> AuditReport:
        return self.auditor.audit_application(db, application_id, deep=deep)

    def recover_missing_documents(self, db: Session) -> dict:
        return self.recovery.recover_missing_documents(db)

    def get_queue_status(self) -> dict:
        return self.retry_queue.get_queue_status()

    def retry_job(self, application_id: str, job_type: str) -> bool:
        return self.retry_queue.retry_job(application_id, job_type)

    def backfill_checksums(self, db: Session) -> dict:
        return checksum_service.backfill_checksums(db, self.disk, self.object_store)

    def verify_document(self, db: Session, document_id: str) -> dict:
        return checksum_service.verify_document(db, document_id, self.disk, self.object_store)

    def check_health(self, db: Session, *, deep: bool = False) -> dict:
        report = self.auditor.audit_all(db, deep=deep)
        summary = self.reporter.evaluate(db, report)
        summary["audit"] = {
            "total_documents": report.total_documents,
            "healthy": report.healthy,
            "at_risk": report.at_risk,
            "failed": report.failed,
            "orphans": len(report.orphans),
        }
        summary["retry_queue"] = {
            "total_jobs": self.retry_queue.get_queue_status()["total_jobs"],
            "is_processing": self.retry_queue.is_running,
        }
        return summary
