import uuid
from datetime import datetime, timezone

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from docguard.errors import DocumentNotFound, StaleDocumentError
from docguard.models.document import Document

BACKUP_STATUSES = ("pending", "completed", "failed")

# checksum_sha256 changes only through set_checksum() or replace_content().
_UPDATABLE_FIELDS = {
    "file_name",
    "document_type",
    "mime_type",
    "disk_path",
    "object_store_key",
    "backup_status",
    "verified",
}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class DocumentLedger:
    """Authoritative Document metadata. Every write touches exactly one row."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        application_id: str,
        file_name: str,
        document_type: str,
        file_size_bytes: int | None = None,
        mime_type: str | None = None,
        disk_path: str | None = None,
        object_store_key: str | None = None,
        checksum_sha256: str | None = None,
        backup_status: str = "pending",
        verified: bool = False,
        document_id: str | None = None,
    ) -> Document:
        if backup_status not in BACKUP_STATUSES:
            raise ValueError(f"Invalid backup_status {backup_status!r}")
        now = utc_now()
        doc = Document(
            id=document_id or str(uuid.uuid4()),
            application_id=application_id,
            file_name=file_name,
            document_type=document_type,
            file_size_bytes=file_size_bytes,
            mime_type=mime_type,
            disk_path=disk_path,
            object_store_key=object_store_key,
            checksum_sha256=checksum_sha256,
            backup_status=backup_status,
            verified=verified,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.db.add(doc)
        self.db.commit()
        self.db.refresh(doc)
        return doc

    def get(self, document_id: str) -> Document | None:
        return self.db.query(Document).filter(Document.id == document_id).first()

    def require(self, document_id: str) -> Document:
        doc = self.get(document_id)
        if doc is None:
            raise DocumentNotFound(document_id)
        return doc

    def list_all(self) -> list[Document]:
        return self.db.query(Document).order_by(Document.id).all()

    def find_by_application(self, application_id: str) -> list[Document]:
        return (
            self.db.query(Document)
            .filter(Document.application_id == application_id)
            .order_by(Document.id)
            .all()
        )

    def find_without_checksum(self) -> list[Document]:
        return (
            self.db.query(Document)
            .filter(or_(Document.checksum_sha256.is_(None), Document.checksum_sha256 == ""))
            .order_by(Document.id)
            .all()
        )

    def find_without_backup(self) -> list[Document]:
        return (
            self.db.query(Document)
            .filter(or_(Document.backup_status != "completed", Document.object_store_key.is_(None)))
            .order_by(Document.id)
            .all()
        )

    def find_by_disk_path(self, disk_path: str) -> Document | None:
        return self.db.query(Document).filter(Document.disk_path == disk_path).first()

    def referenced_disk_paths(self) -> set[str]:
        rows = self.db.query(Document.disk_path).filter(Document.disk_path.isnot(None)).all()
        return {row.disk_path for row in rows}

    def referenced_store_keys(self) -> set[str]:
        rows = self.db.query(Document.object_store_key).filter(Document.object_store_key.isnot(None)).all()
        return {row.object_store_key for row in rows}

    def _apply(self, document_id: str, values: dict, expected_version: int | None) -> Document:
        doc = self.require(document_id)
        version = doc.version if expected_version is None else expected_version
        values = {**values, "version": version + 1, "updated_at": utc_now()}
        result = self.db.execute(
            update(Document)
            .where(Document.id == document_id, Document.version == version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise StaleDocumentError(document_id, version)
        self.db.commit()
        self.db.refresh(doc)
        return doc

    def update(self, document_id: str, *, expected_version: int | None = None, **fields) -> Document:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable through the ledger: {sorted(unknown)}")
        if "backup_status" in fields and fields["backup_status"] not in BACKUP_STATUSES:
            raise ValueError(f"Invalid backup_status {fields['backup_status']!r}")
        return self._apply(document_id, fields, expected_version)

    def set_checksum(self, document_id: str, checksum_sha256: str, *, verified: bool = True) -> Document:
        doc = self.require(document_id)
        if doc.checksum_sha256:
            raise ValueError(f"Document {document_id} already has a checksum; re-upload to replace it")
        return self._apply(
            document_id,
            {"checksum_sha256": checksum_sha256, "verified": verified},
            doc.version,
        )

    def replace_content(
        self,
        document_id: str,
        *,
        disk_path: str,
        checksum_sha256: str,
        file_size_bytes: int,
        file_name: str | None = None,
        mime_type: str | None = None,
        verified: bool = True,
    ) -> Document:
        """Re-upload: the new content supersedes all prior content and backup state."""
        doc = self.require(document_id)
        values = {
            "disk_path": disk_path,
            "checksum_sha256": checksum_sha256,
            "file_size_bytes": file_size_bytes,
            "object_store_key": None,
            "backup_status": "pending",
            "verified": verified,
        }
        if file_name:
            values["file_name"] = file_name
        if mime_type:
            values["mime_type"] = mime_type
        return self._apply(document_id, values, doc.version)

    def delete(self, document_id: str) -> bool:
        doc = self.get(document_id)
        if doc is None:
            return False
        self.db.delete(doc)
        self.db.commit()
        return True
