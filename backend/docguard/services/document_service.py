import logging
import mimetypes
import uuid

from sqlalchemy.orm import Session, sessionmaker

from docguard.errors import ContentMismatch, StorageError
from docguard.models.document import Document
from docguard.services.health_service import BACKUP_JOB_TYPE
from docguard.services.ledger import DocumentLedger
from docguard.services.retry_queue import QueuedJob, RetryQueue
from docguard.services.storage import StorageTier
from docguard.utils.filesystem import build_storage_key
from docguard.utils.hashing import sha256_bytes, validate_checksum

logger = logging.getLogger("docguard.documents")

VALID_DOCUMENT_TYPES = {
    "bank_statements", "tax_returns", "financial_statements", "business_license",
    "articles_of_incorporation", "drivers_license", "void_cheque", "invoice",
    "profit_loss_statement", "balance_sheet", "accounts_receivable",
    "accounts_payable", "equipment_quote", "other",
}


class UploadRejected(ValueError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class DocumentService:
    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        disk: StorageTier,
        object_store: StorageTier,
        retry_queue: RetryQueue,
        max_upload_bytes: int,
    ):
        self.session_factory = session_factory
        self.disk = disk
        self.object_store = object_store
        self.retry_queue = retry_queue
        self.max_upload_bytes = max_upload_bytes

    def _check_content(self, content: bytes) -> None:
        if not content:
            raise UploadRejected("Empty file")
        if len(content) > self.max_upload_bytes:
            raise UploadRejected(f"File too large (max {self.max_upload_bytes} bytes)", status_code=413)

    def _write_disk(self, key: str, content: bytes) -> tuple[str, str, bool]:
        """Durable Disk write. Returns (disk_path, checksum, verified)."""
        checksum = sha256_bytes(content)
        disk_path = self.disk.put(content, key)
        verified = validate_checksum(self.disk.get(disk_path), checksum)
        return disk_path, checksum, verified

    def upload(
        self,
        db: Session,
        application_id: str,
        content: bytes,
        file_name: str,
        document_type: str,
        mime_type: str | None = None,
    ) -> dict:
        if document_type not in VALID_DOCUMENT_TYPES:
            raise UploadRejected(f"Invalid document_type. Must be one of: {sorted(VALID_DOCUMENT_TYPES)}")
        self._check_content(content)

        document_id = str(uuid.uuid4())
        key = build_storage_key(application_id, document_id, file_name)
        # Disk failures propagate: no Ledger row is created without durable bytes.
        disk_path, checksum, verified = self._write_disk(key, content)

        doc = DocumentLedger(db).create(
            document_id=document_id,
            application_id=application_id,
            file_name=file_name,
            document_type=document_type,
            file_size_bytes=len(content),
            mime_type=mime_type or mimetypes.guess_type(file_name)[0],
            disk_path=disk_path,
            checksum_sha256=checksum,
            backup_status="pending",
            verified=verified,
        )
        self.retry_queue.enqueue(
            db,
            application_id=application_id,
            job_type=BACKUP_JOB_TYPE,
            payload={"document_id": doc.id},
        )
        logger.info("Uploaded document %s (%d bytes) for application %s", doc.id, len(content), application_id)
        return {
            "document_id": doc.id,
            "backup_status": doc.backup_status,
            "disk_path": doc.disk_path,
            "checksum_sha256": doc.checksum_sha256,
        }

    def reupload(
        self,
        db: Session,
        document_id: str,
        content: bytes,
        file_name: str | None = None,
        mime_type: str | None = None,
    ) -> dict:
        ledger = DocumentLedger(db)
        doc = ledger.require(document_id)
        self._check_content(content)

        name = file_name or doc.file_name
        key = build_storage_key(doc.application_id, doc.id, name)
        disk_path, checksum, verified = self._write_disk(key, content)
        if doc.disk_path and doc.disk_path != disk_path:
            logger.info("Re-upload of %s moves disk path %s -> %s", doc.id, doc.disk_path, disk_path)

        doc = ledger.replace_content(
            doc.id,
            disk_path=disk_path,
            checksum_sha256=checksum,
            file_size_bytes=len(content),
            file_name=file_name,
            mime_type=mime_type,
            verified=verified,
        )
        self.retry_queue.enqueue(
            db,
            application_id=doc.application_id,
            job_type=BACKUP_JOB_TYPE,
            payload={"document_id": doc.id},
        )
        return {
            "document_id": doc.id,
            "backup_status": doc.backup_status,
            "disk_path": doc.disk_path,
            "checksum_sha256": doc.checksum_sha256,
        }

    def _targets(self, ledger: DocumentLedger, job: QueuedJob) -> list[Document]:
        document_id = job.payload.get("document_id")
        if document_id:
            doc = ledger.get(document_id)
            return [doc] if doc else []
        return [
            doc for doc in ledger.find_by_application(job.application_id)
            if doc.backup_status != "completed" or not doc.object_store_key
        ]

    def replicate(self, job: QueuedJob) -> None:
        """Retry handler: copy Disk bytes to the Object Store. Safe to run twice."""
        db = self.session_factory()
        try:
            ledger = DocumentLedger(db)
            for doc in self._targets(ledger, job):
                self._replicate_one(ledger, doc)
        finally:
            db.close()

    def _replicate_one(self, ledger: DocumentLedger, doc: Document) -> None:
        key = doc.object_store_key or build_storage_key(doc.application_id, doc.id, doc.file_name)
        if doc.object_store_key and self.object_store.exists(key):
            if doc.backup_status != "completed":
                ledger.update(doc.id, backup_status="completed")
            return
        if not doc.disk_path:
            raise StorageError(f"Document {doc.id} has no disk copy to replicate", tier="disk")

        data = self.disk.get(doc.disk_path)
        if doc.checksum_sha256 and not validate_checksum(data, doc.checksum_sha256):
            raise ContentMismatch(
                f"Disk bytes for {doc.id} no longer match the recorded checksum",
                tier="disk", key=doc.disk_path,
            )
        physical_key = self.object_store.put(data, key)
        ledger.update(doc.id, object_store_key=physical_key, backup_status="completed")
        logger.info("Replicated document %s to object store key %s", doc.id, physical_key)

    def mark_backup_failed(self, job: QueuedJob, error: str) -> None:
        db = self.session_factory()
        try:
            ledger = DocumentLedger(db)
            for doc in self._targets(ledger, job):
                if doc.backup_status != "completed":
                    ledger.update(doc.id, backup_status="failed")
                    logger.error("Backup of document %s failed terminally: %s", doc.id, error)
        finally:
            db.close()
