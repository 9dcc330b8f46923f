import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from docguard.models.retry import RetryJob, RetryLogEntry
from docguard.services.storage import describe_error

logger = logging.getLogger("docguard.retry")


def format_epoch(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class QueuedJob:
    """Detached view of a RetryJob handed to handlers."""

    id: str
    application_id: str
    job_type: str
    attempt: int
    max_attempts: int
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: RetryJob) -> "QueuedJob":
        return cls(
            id=row.id,
            application_id=row.application_id,
            job_type=row.job_type,
            attempt=row.attempt,
            max_attempts=row.max_attempts,
            payload=row.payload_data,
        )


Handler = Callable[[QueuedJob], None]
TerminalHook = Callable[[QueuedJob, str], None]


class RetryQueue:
    """Time-ordered RetryJob queue with exponential backoff.

    Handlers are registered per job type and must be idempotent: a job can run
    again after a restart because attempts are not persisted transactionally.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        base_delay_ms: int = 30_000,
        max_attempts: int = 3,
        poll_interval_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.session_factory = session_factory
        self.base_delay_ms = base_delay_ms
        self.max_attempts = max_attempts
        self.poll_interval_seconds = poll_interval_seconds
        self.clock = clock
        self._handlers: dict[str, tuple[Handler, TerminalHook | None]] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def register(self, job_type: str, handler: Handler, *, on_terminal: TerminalHook | None = None) -> None:
        self._handlers[job_type] = (handler, on_terminal)

    def backoff_ms_for(self, attempt: int) -> int:
        return self.base_delay_ms * 2 ** (attempt - 1)

    def enqueue(
        self,
        db: Session,
        *,
        application_id: str,
        job_type: str,
        payload: dict[str, Any] | None = None,
        max_attempts: int | None = None,
    ) -> RetryJob:
        now = self.clock()
        job = RetryJob(
            id=f"{job_type}_{uuid.uuid4().hex[:12]}",
            application_id=application_id,
            job_type=job_type,
            payload=json.dumps(payload or {}, sort_keys=True),
            attempt=0,
            max_attempts=max_attempts or self.max_attempts,
            scheduled_at=now,
            backoff_ms=0,
            created_at=format_epoch(now),
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        logger.info("Enqueued %s job %s for application %s", job_type, job.id, application_id)
        return job

    def process(self) -> dict[str, int]:
        """Attempt every due job once. A failing job never stops the pass."""
        stats = {"processed": 0, "succeeded": 0, "rescheduled": 0, "failed": 0, "errors": 0}
        db = self.session_factory()
        try:
            due = (
                db.query(RetryJob)
                .filter(RetryJob.scheduled_at <= self.clock())
                .order_by(RetryJob.scheduled_at, RetryJob.id)
                .all()
            )
            for job in due:
                outcome = self._attempt_safely(db, job)
                stats[outcome] += 1
                if outcome != "errors":
                    stats["processed"] += 1
        finally:
            db.close()
        return stats

    def _attempt_safely(self, db: Session, job: RetryJob) -> str:
        """Run one attempt; a database error on this job skips it for the rest of the pass."""
        identity = inspect(job).identity
        try:
            return self._attempt(db, job)
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Retry bookkeeping failed for job %s; skipped this pass", identity[0] if identity else "?"
            )
            return "errors"

    def _attempt(self, db: Session, job: RetryJob) -> str:
        job.attempt += 1
        snapshot = QueuedJob.from_row(job)
        entry = self._handlers.get(job.job_type)
        error = None
        try:
            if entry is None:
                raise LookupError(f"No handler registered for job type {job.job_type!r}")
            entry[0](snapshot)
        except Exception as exc:
            error = describe_error(exc)

        now = self.clock()
        if error is None:
            self._log(db, snapshot, now, success=True)
            db.delete(job)
            db.commit()
            logger.info("Job %s succeeded on attempt %d", snapshot.id, snapshot.attempt)
            return "succeeded"

        job.last_error = error
        if snapshot.attempt < snapshot.max_attempts:
            delay_ms = self.backoff_ms_for(snapshot.attempt)
            job.backoff_ms = delay_ms
            job.scheduled_at = now + delay_ms / 1000
            self._log(
                db, snapshot, now,
                success=False, error=error, backoff_ms=delay_ms, next_scheduled_at=job.scheduled_at,
            )
            db.commit()
            logger.warning(
                "Job %s attempt %d/%d failed (%s); retrying in %d ms",
                snapshot.id, snapshot.attempt, snapshot.max_attempts, error, delay_ms,
            )
            return "rescheduled"

        self._log(db, snapshot, now, success=False, terminal=True, error=error)
        db.delete(job)
        db.commit()
        logger.error(
            "Job %s failed terminally after %d attempts: %s", snapshot.id, snapshot.attempt, error
        )
        on_terminal = entry[1] if entry else None
        if on_terminal is not None:
            try:
                on_terminal(snapshot, error)
            except Exception:
                logger.exception("Terminal hook for job %s failed", snapshot.id)
        return "failed"

    def _log(
        self,
        db: Session,
        job: QueuedJob,
        now: float,
        *,
        success: bool,
        terminal: bool = False,
        error: str | None = None,
        backoff_ms: int | None = None,
        next_scheduled_at: float | None = None,
    ) -> None:
        db.add(RetryLogEntry(
            job_id=job.id,
            application_id=job.application_id,
            job_type=job.job_type,
            attempt=job.attempt,
            success=success,
            terminal=terminal,
            error_message=error,
            backoff_ms=backoff_ms,
            next_scheduled_at=next_scheduled_at,
            created_at=format_epoch(now),
        ))

    def retry_job(self, application_id: str, job_type: str) -> bool:
        """Manual trigger: attempt matching jobs now, or a one-shot job if none is queued."""
        db = self.session_factory()
        try:
            jobs = (
                db.query(RetryJob)
                .filter(RetryJob.application_id == application_id, RetryJob.job_type == job_type)
                .order_by(RetryJob.scheduled_at)
                .all()
            )
            if not jobs:
                if job_type not in self._handlers:
                    return False
                now = self.clock()
                one_shot = RetryJob(
                    id=f"{job_type}_{uuid.uuid4().hex[:12]}",
                    application_id=application_id,
                    job_type=job_type,
                    payload=json.dumps({"application_id": application_id}),
                    attempt=0,
                    max_attempts=1,
                    scheduled_at=now,
                    backoff_ms=0,
                    created_at=format_epoch(now),
                )
                db.add(one_shot)
                db.flush()
                jobs = [one_shot]
            outcomes = [self._attempt_safely(db, job) for job in jobs]
            return all(outcome == "succeeded" for outcome in outcomes)
        finally:
            db.close()

    def get_queue_status(self) -> dict:
        db = self.session_factory()
        try:
            jobs = db.query(RetryJob).order_by(RetryJob.scheduled_at, RetryJob.id).all()
            return {
                "total_jobs": len(jobs),
                "is_processing": self._running,
                "jobs": [
                    {
                        "id": job.id,
                        "application_id": job.application_id,
                        "job_type": job.job_type,
                        "attempt": job.attempt,
                        "max_attempts": job.max_attempts,
                        "scheduled_at": format_epoch(job.scheduled_at),
                        "backoff_ms": job.backoff_ms,
                        "last_error": job.last_error,
                    }
                    for job in jobs
                ],
            }
        finally:
            db.close()

    def get_logs(self, limit: int = 50, application_id: str | None = None) -> list[RetryLogEntry]:
        db = self.session_factory()
        try:
            query = db.query(RetryLogEntry)
            if application_id:
                query = query.filter(RetryLogEntry.application_id == application_id)
            rows = query.order_by(RetryLogEntry.id.desc()).limit(limit).all()
            db.expunge_all()
            return rows
        finally:
            db.close()

    async def run(self, *, stop_after_iterations: int | None = None) -> None:
        """Fixed-interval polling loop; the only long-lived background task."""
        self._running = True
        iterations = 0
        logger.info("Retry queue polling every %.1fs", self.poll_interval_seconds)
        try:
            while self._running:
                try:
                    await asyncio.to_thread(self.process)
                except Exception:
                    logger.exception("Retry queue pass failed")
                iterations += 1
                if stop_after_iterations is not None and iterations >= stop_after_iterations:
                    break
                await asyncio.sleep(self.poll_interval_seconds)
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False
