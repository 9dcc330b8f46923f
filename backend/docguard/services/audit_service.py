import csv
import io
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from docguard.errors import NotFound, StorageError
from docguard.models.document import Document
from docguard.services.ledger import DocumentLedger
from docguard.services.storage import StorageTier, describe_error
from docguard.utils.filesystem import key_in_application
from docguard.utils.hashing import validate_checksum

logger = logging.getLogger("docguard.audit")

RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"


@dataclass
class AuditFinding:
    document_id: str
    application_id: str
    file_name: str
    disk_path: str | None
    object_store_key: str | None
    missing_on_disk: bool
    missing_in_store: bool
    checksum_mismatch: bool
    risk_level: str
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class OrphanFile:
    tier: str
    key: str
    size_bytes: int | None = None


@dataclass
class AuditReport:
    total_documents: int
    healthy: int
    at_risk: int
    failed: int
    findings: list[AuditFinding]
    orphans: list[OrphanFile]
    generated_at: str

    def findings_missing_on_disk(self) -> list[AuditFinding]:
        return [f for f in self.findings if f.missing_on_disk]

    def orphans_on(self, tier: str) -> list[OrphanFile]:
        return [o for o in self.orphans if o.tier == tier]


def compute_risk_level(missing_on_disk: bool, missing_in_store: bool, checksum_mismatch: bool) -> str:
    if missing_on_disk and missing_in_store:
        return RISK_HIGH  # total loss
    if missing_on_disk or missing_in_store or checksum_mismatch:
        return RISK_MEDIUM
    return RISK_LOW


class AuditEngine:
    """Compares the Ledger against both tiers. Reads only; repair is a separate action."""

    def __init__(self, disk: StorageTier, object_store: StorageTier):
        self.disk = disk
        self.object_store = object_store

    def audit_all(self, db: Session, *, deep: bool = False) -> AuditReport:
        ledger = DocumentLedger(db)
        documents = ledger.list_all()
        orphans = self._scan_orphans(ledger)
        return self._build_report(documents, orphans, deep=deep)

    def audit_application(self, db: Session, application_id: str, *, deep: bool = False) -> AuditReport:
        ledger = DocumentLedger(db)
        documents = ledger.find_by_application(application_id)
        orphans = [
            orphan for orphan in self._scan_orphans(ledger)
            if key_in_application(orphan.key, application_id)
        ]
        return self._build_report(documents, orphans, deep=deep)

    def _build_report(self, documents: list[Document], orphans: list[OrphanFile], *, deep: bool) -> AuditReport:
        findings = []
        counts = {RISK_LOW: 0, RISK_MEDIUM: 0, RISK_HIGH: 0}
        for doc in documents:
            finding = self.check_document(doc, deep=deep)
            counts[finding.risk_level] += 1
            if finding.risk_level != RISK_LOW:
                findings.append(finding)

        logger.info(
            "Audit complete: %d documents, %d healthy, %d at risk, %d failed, %d orphans",
            len(documents), counts[RISK_LOW], counts[RISK_MEDIUM], counts[RISK_HIGH], len(orphans),
        )
        return AuditReport(
            total_documents=len(documents),
            healthy=counts[RISK_LOW],
            at_risk=counts[RISK_MEDIUM],
            failed=counts[RISK_HIGH],
            findings=findings,
            orphans=orphans,
            generated_at=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        )

    def check_document(self, doc: Document, *, deep: bool = False) -> AuditFinding:
        errors: list[str] = []
        on_disk = self._present(self.disk, doc.disk_path, errors)
        in_store = self._present(self.object_store, doc.object_store_key, errors)

        checksum_mismatch = False
        if deep and doc.checksum_sha256:
            for tier, key, present in (
                (self.disk, doc.disk_path, on_disk),
                (self.object_store, doc.object_store_key, in_store),
            ):
                if present and not self._matches_checksum(tier, key, doc.checksum_sha256, errors):
                    checksum_mismatch = True

        return AuditFinding(
            document_id=doc.id,
            application_id=doc.application_id,
            file_name=doc.file_name,
            disk_path=doc.disk_path,
            object_store_key=doc.object_store_key,
            missing_on_disk=not on_disk,
            missing_in_store=not in_store,
            checksum_mismatch=checksum_mismatch,
            risk_level=compute_risk_level(not on_disk, not in_store, checksum_mismatch),
            errors=errors,
        )

    @staticmethod
    def _present(tier: StorageTier, key: str | None, errors: list[str]) -> bool:
        if not key:
            return False
        try:
            return tier.exists(key)
        except (StorageError, ValueError) as exc:
            # An unreachable tier cannot vouch for the bytes.
            errors.append(f"{tier.name}: {describe_error(exc)}")
            return False

    @staticmethod
    def _matches_checksum(tier: StorageTier, key: str, expected: str, errors: list[str]) -> bool:
        try:
            return validate_checksum(tier.get(key), expected)
        except NotFound:
            return True  # raced with a delete; absence shows up on the next run
        except StorageError as exc:
            errors.append(f"{tier.name}: {describe_error(exc)}")
            return True

    def _scan_orphans(self, ledger: DocumentLedger) -> list[OrphanFile]:
        orphans = []
        for tier, referenced in (
            (self.disk, ledger.referenced_disk_paths()),
            (self.object_store, ledger.referenced_store_keys()),
        ):
            try:
                keys = tier.list_keys()
            except StorageError as exc:
                logger.warning("Orphan scan skipped for %s: %s", tier.name, describe_error(exc))
                continue
            for key in keys:
                if key in referenced:
                    continue
                orphans.append(OrphanFile(tier=tier.name, key=key, size_bytes=self._size(tier, key)))
        return orphans

    @staticmethod
    def _size(tier: StorageTier, key: str) -> int | None:
        try:
            return tier.size(key)
        except StorageError:
            return None


def export_audit_csv(report: AuditReport) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "document_id", "application_id", "file_name", "missing_on_disk",
        "missing_in_store", "checksum_mismatch", "risk_level", "errors", "generated_at",
    ])
    for finding in report.findings:
        writer.writerow([
            finding.document_id, finding.application_id, finding.file_name,
            "yes" if finding.missing_on_disk else "no",
            "yes" if finding.missing_in_store else "no",
            "yes" if finding.checksum_mismatch else "no",
            finding.risk_level.upper(),
            "; ".join(finding.errors),
            report.generated_at,
        ])
    return output.getvalue()
