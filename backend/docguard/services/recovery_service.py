"""Reconcile Ledger rows whose disk file vanished with orphaned files on disk."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from docguard.errors import StaleDocumentError, StorageError
from docguard.models.document import Document
from docguard.models.recovery_log import RecoveryLogEntry
from docguard.services.audit_service import AuditEngine, OrphanFile
from docguard.services.health_service import HealthReporter
from docguard.services.ledger import DocumentLedger
from docguard.services.storage import StorageTier
from docguard.utils.filesystem import key_basename, key_in_application
from docguard.utils.hashing import validate_checksum
from docguard.utils.similarity import similarity

logger = logging.getLogger("docguard.recovery")

MISSING_DETECTED = "MISSING_DETECTED"
RECOVERED = "RECOVERED"
RECOVERY_FAILED = "RECOVERY_FAILED"


@dataclass(frozen=True)
class RecoveryCandidate:
    document_id: str
    orphan_key: str
    strategy: str
    score: float


class MatchStrategy(Protocol):
    name: str

    def score(self, document: Document, orphan: OrphanFile) -> float | None:
        ...


def candidate_names(document: Document) -> list[str]:
    """Lower-cased names a document may appear under on disk."""
    names = []
    for raw in (document.file_name, key_basename(document.disk_path or "")):
        name = (raw or "").strip().lower()
        if name and name not in names:
            names.append(name)
    return names


def size_matches(document: Document, orphan: OrphanFile) -> bool:
    if not document.file_size_bytes or orphan.size_bytes is None:
        return True
    return document.file_size_bytes == orphan.size_bytes


class ExactFilenameStrategy:
    name = "exact_filename"

    def score(self, document: Document, orphan: OrphanFile) -> float | None:
        if not size_matches(document, orphan):
            return None
        return 1.0 if key_basename(orphan.key).lower() in candidate_names(document) else None


class SubstringStrategy:
    name = "substring"

    def score(self, document: Document, orphan: OrphanFile) -> float | None:
        if not size_matches(document, orphan):
            return None
        base = key_basename(orphan.key).lower()
        best = None
        for name in candidate_names(document):
            if name in base or base in name:
                score = similarity(name, base)
                best = score if best is None else max(best, score)
        return best


class ApplicationPathStrategy:
    name = "application_path_similarity"

    def __init__(self, threshold: float = 0.7):
        self.threshold = threshold

    def score(self, document: Document, orphan: OrphanFile) -> float | None:
        if not key_in_application(orphan.key, document.application_id):
            return None
        base = key_basename(orphan.key).lower()
        best = max((similarity(name, base) for name in candidate_names(document)), default=0.0)
        return best if best >= self.threshold else None


def default_strategies(threshold: float = 0.7) -> list[MatchStrategy]:
    return [ExactFilenameStrategy(), SubstringStrategy(), ApplicationPathStrategy(threshold)]


class RecoveryMatcher:
    def __init__(self, strategies: Sequence[MatchStrategy] | None = None):
        self.strategies = list(strategies) if strategies is not None else default_strategies()

    def match_one(
        self,
        document: Document,
        orphans: Sequence[OrphanFile],
        verify: Callable[[Document, OrphanFile], bool] | None = None,
    ) -> RecoveryCandidate | None:
        for strategy in self.strategies:
            scored = []
            for orphan in orphans:
                score = strategy.score(document, orphan)
                if score is not None:
                    scored.append((score, orphan))
            scored.sort(key=lambda item: (-item[0], item[1].key))
            for score, orphan in scored:
                if verify is None or verify(document, orphan):
                    return RecoveryCandidate(document.id, orphan.key, strategy.name, score)
        return None

    def match(
        self,
        documents: Sequence[Document],
        orphans: Sequence[OrphanFile],
        verify: Callable[[Document, OrphanFile], bool] | None = None,
    ) -> list[RecoveryCandidate]:
        """Pair documents with orphans; each orphan is claimed at most once."""
        claimed: set[str] = set()
        candidates = []
        for document in documents:
            available = [o for o in orphans if o.key not in claimed]
            candidate = self.match_one(document, available, verify)
            if candidate is not None:
                claimed.add(candidate.orphan_key)
                candidates.append(candidate)
        return candidates


class RecoveryService:
    def __init__(
        self,
        *,
        auditor: AuditEngine,
        disk: StorageTier,
        reporter: HealthReporter,
        matcher: RecoveryMatcher | None = None,
    ):
        self.auditor = auditor
        self.disk = disk
        self.reporter = reporter
        self.matcher = matcher or RecoveryMatcher()

    def _bytes_agree(self, document: Document, orphan: OrphanFile) -> bool:
        if not document.checksum_sha256:
            return True
        try:
            return validate_checksum(self.disk.get(orphan.key), document.checksum_sha256)
        except StorageError:
            return False

    def recover_missing_documents(self, db: Session) -> dict:
        report = self.auditor.audit_all(db)
        missing = report.findings_missing_on_disk()
        orphans = report.orphans_on(self.disk.name)
        ledger = DocumentLedger(db)
        documents = [ledger.require(finding.document_id) for finding in missing]

        for finding in missing:
            self._log(db, finding.document_id, finding.application_id, finding.file_name,
                      MISSING_DETECTED, old_path=finding.disk_path)

        candidates = {
            c.document_id: c for c in self.matcher.match(documents, orphans, verify=self._bytes_agree)
        }

        details = []
        unresolved = []
        for finding, document in zip(missing, documents):
            candidate = candidates.get(document.id)
            old_path = document.disk_path
            if candidate is None:
                unresolved.append(finding)
                self._log(db, document.id, document.application_id, document.file_name,
                          RECOVERY_FAILED, old_path=old_path, details="no matching orphan file")
                details.append({
                    "document_id": document.id,
                    "file_name": document.file_name,
                    "status": "missing",
                    "risk_level": finding.risk_level,
                    "old_path": old_path,
                })
                continue

            try:
                ledger.update(document.id, disk_path=candidate.orphan_key)
            except StaleDocumentError as exc:
                unresolved.append(finding)
                self._log(db, document.id, document.application_id, document.file_name,
                          RECOVERY_FAILED, old_path=old_path, details=str(exc))
                details.append({"document_id": document.id, "file_name": document.file_name,
                                "status": "conflict", "old_path": old_path})
                continue

            logger.info(
                "Recovered document %s via %s: %s -> %s",
                document.id, candidate.strategy, old_path, candidate.orphan_key,
            )
            self._log(db, document.id, document.application_id, document.file_name, RECOVERED,
                      strategy=candidate.strategy, old_path=old_path, new_path=candidate.orphan_key)
            details.append({
                "document_id": document.id,
                "file_name": document.file_name,
                "status": "recovered",
                "strategy": candidate.strategy,
                "score": round(candidate.score, 4),
                "old_path": old_path,
                "new_path": candidate.orphan_key,
            })

        self.reporter.escalate_unrecovered(db, unresolved)
        recovered = len(missing) - len(unresolved)
        logger.info("Recovery run: %d processed, %d recovered, %d still missing",
                    len(missing), recovered, len(unresolved))
        return {
            "total_processed": len(missing),
            "recovered": recovered,
            "still_missing": len(unresolved),
            "details": details,
        }

    @staticmethod
    def _log(db: Session, document_id: str, application_id: str, file_name: str | None, status: str,
             *, strategy: str | None = None, old_path: str | None = None,
             new_path: str | None = None, details: str | None = None) -> None:
        db.add(RecoveryLogEntry(
            document_id=document_id,
            application_id=application_id,
            file_name=file_name,
            status=status,
            strategy=strategy,
            old_path=old_path,
            new_path=new_path,
            details=details,
            created_at=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        ))
        db.commit()


def list_recovery_logs(db: Session, *, limit: int = 50, document_id: str | None = None) -> list[RecoveryLogEntry]:
    query = db.query(RecoveryLogEntry)
    if document_id:
        query = query.filter(RecoveryLogEntry.document_id == document_id)
    return query.order_by(RecoveryLogEntry.id.desc()).limit(limit).all()


def recovery_stats(db: Session) -> dict:
    rows = (
        db.query(RecoveryLogEntry.status, func.count(RecoveryLogEntry.id).label("n"))
        .group_by(RecoveryLogEntry.status)
        .all()
    )
    by_status = {row.status: row.n for row in rows}
    return {
        "missing_detected": by_status.get(MISSING_DETECTED, 0),
        "recovered": by_status.get(RECOVERED, 0),
        "recovery_failed": by_status.get(RECOVERY_FAILED, 0),
        "total_events": sum(by_status.values()),
    }
