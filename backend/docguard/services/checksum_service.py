import logging

from sqlalchemy.orm import Session

from docguard.errors import StorageError
from docguard.models.document import Document
from docguard.services.ledger import DocumentLedger
from docguard.services.storage import StorageTier, describe_error
from docguard.utils.hashing import sha256_bytes, validate_checksum

logger = logging.getLogger("docguard.checksum")


def read_source_bytes(doc: Document, disk: StorageTier, object_store: StorageTier) -> tuple[bytes | None, str | None, list[str]]:
    """Fetch a document's bytes from Disk, falling back to the Object Store."""
    errors = []
    for tier, key in ((disk, doc.disk_path), (object_store, doc.object_store_key)):
        if not key:
            continue
        try:
            return tier.get(key), tier.name, errors
        except (StorageError, ValueError) as exc:
            errors.append(f"{tier.name}: {describe_error(exc)}")
    return None, None, errors


def backfill_checksums(db: Session, disk: StorageTier, object_store: StorageTier) -> dict:
    """Compute digests for legacy rows that never had one."""
    ledger = DocumentLedger(db)
    details = []
    updated = 0
    unverifiable = 0
    pending = ledger.find_without_checksum()

    for doc in pending:
        data, source, errors = read_source_bytes(doc, disk, object_store)
        if data is None:
            unverifiable += 1
            details.append({"document_id": doc.id, "status": "unverifiable", "errors": errors})
            continue
        digest = sha256_bytes(data)
        ledger.set_checksum(doc.id, digest)
        updated += 1
        details.append({"document_id": doc.id, "status": "updated", "source": source, "checksum_sha256": digest})

    logger.info("Checksum backfill: %d processed, %d updated, %d unverifiable", len(pending), updated, unverifiable)
    return {
        "processed": len(pending),
        "updated": updated,
        "unverifiable": unverifiable,
        "details": details,
    }


def verify_document(db: Session, document_id: str, disk: StorageTier, object_store: StorageTier) -> dict:
    """Re-hash stored bytes against the recorded digest and record the outcome."""
    ledger = DocumentLedger(db)
    doc = ledger.require(document_id)
    data, source, errors = read_source_bytes(doc, disk, object_store)

    if data is None or not doc.checksum_sha256:
        return {
            "document_id": doc.id,
            "verified": False,
            "status": "unverifiable",
            "stored_hash": doc.checksum_sha256,
            "actual_hash": None,
            "source": source,
            "errors": errors,
        }

    verified = validate_checksum(data, doc.checksum_sha256)
    if verified != bool(doc.verified):
        ledger.update(doc.id, verified=verified)
    if not verified:
        logger.warning("Checksum mismatch for document %s read from %s", doc.id, source)
    return {
        "document_id": doc.id,
        "verified": verified,
        "status": "verified" if verified else "checksum_mismatch",
        "stored_hash": doc.checksum_sha256,
        "actual_hash": sha256_bytes(data),
        "source": source,
        "errors": errors,
    }
