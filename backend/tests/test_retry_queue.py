import asyncio

from docguard.models.retry import RetryJob, RetryLogEntry
from docguard.services.ledger import DocumentLedger
from docguard.services.retry_queue import RetryQueue
from docguard.services.storage import TimeoutTier


def _drain(queue: RetryQueue, clock, rounds: int = 10) -> None:
    for _ in range(rounds):
        queue.process()
        clock.advance(3600)


class TestRetryQueue:
    def _queue(self, session_factory, clock, **kwargs):
        return RetryQueue(session_factory, base_delay_ms=1000, max_attempts=3, clock=clock, **kwargs)

    def test_successful_job_logged_once_and_removed(self, session_factory, clock, db):
        calls = []
        queue = self._queue(session_factory, clock)
        queue.register("noop", lambda job: calls.append(job.attempt))
        job = queue.enqueue(db, application_id="app-1", job_type="noop")

        assert queue.process()["succeeded"] == 1
        _drain(queue, clock)
        assert calls == [1]
        assert queue.get_queue_status()["total_jobs"] == 0
        logs = db.query(RetryLogEntry).filter(RetryLogEntry.job_id == job.id).all()
        assert len(logs) == 1
        assert logs[0].success is True

    def test_failing_job_attempted_exactly_max_attempts(self, session_factory, clock, db):
        attempts = []
        terminal = []

        def handler(job):
            attempts.append(job.attempt)
            raise RuntimeError("boom")

        queue = self._queue(session_factory, clock)
        queue.register("flaky", handler, on_terminal=lambda job, error: terminal.append(error))
        job = queue.enqueue(db, application_id="app-1", job_type="flaky")
        _drain(queue, clock)

        assert attempts == [1, 2, 3]
        assert terminal == ["RuntimeError: boom"]
        logs = (
            db.query(RetryLogEntry)
            .filter(RetryLogEntry.job_id == job.id)
            .order_by(RetryLogEntry.id)
            .all()
        )
        assert [log.attempt for log in logs] == [1, 2, 3]
        assert [log.terminal for log in logs] == [False, False, True]
        delays = [log.backoff_ms for log in logs[:2]]
        assert delays == [1000, 2000]
        assert queue.get_queue_status()["total_jobs"] == 0

    def test_job_not_retried_before_backoff_elapses(self, session_factory, clock, db):
        attempts = []

        def handler(job):
            attempts.append(job.attempt)
            raise RuntimeError("down")

        queue = self._queue(session_factory, clock)
        queue.register("flaky", handler)
        queue.enqueue(db, application_id="app-1", job_type="flaky")

        queue.process()
        clock.advance(0.5)
        assert queue.process()["processed"] == 0
        clock.advance(0.5)
        assert queue.process()["processed"] == 1
        assert attempts == [1, 2]

        status = queue.get_queue_status()["jobs"][0]
        assert status["attempt"] == 2
        assert status["backoff_ms"] == 2000
        assert status["last_error"] == "RuntimeError: down"

    def test_backoff_is_strictly_increasing(self, session_factory, clock):
        queue = RetryQueue(session_factory, base_delay_ms=500, max_attempts=5, clock=clock)
        delays = [queue.backoff_ms_for(n) for n in range(1, 5)]
        assert delays == [500, 1000, 2000, 4000]

    def test_one_failure_does_not_abort_pass(self, session_factory, clock, db):
        done = []
        queue = self._queue(session_factory, clock)
        def bad(job):
            raise ValueError("x")

        queue.register("bad", bad)
        queue.register("good", lambda job: done.append(job.id))
        queue.enqueue(db, application_id="app-1", job_type="bad")
        queue.enqueue(db, application_id="app-1", job_type="good")

        stats = queue.process()
        assert stats["processed"] == 2
        assert stats["succeeded"] == 1
        assert stats["rescheduled"] == 1
        assert len(done) == 1

    def test_job_removed_mid_attempt_does_not_abort_pass(self, session_factory, clock, db):
        done = []

        def raced(job):
            # Another worker finishes and removes the job while this attempt runs.
            other = session_factory()
            try:
                other.query(RetryJob).filter(RetryJob.id == job.id).delete()
                other.commit()
            finally:
                other.close()
            raise RuntimeError("late failure")

        queue = self._queue(session_factory, clock)
        queue.register("raced", raced)
        queue.register("good", lambda job: done.append(job.id))
        queue.enqueue(db, application_id="app-1", job_type="raced")
        good = queue.enqueue(db, application_id="app-1", job_type="good")

        stats = queue.process()
        assert stats["errors"] == 1
        assert stats["processed"] == 1
        assert done == [good.id]
        assert queue.get_queue_status()["total_jobs"] == 0

    def test_unknown_job_type_fails(self, session_factory, clock, db):
        queue = self._queue(session_factory, clock)
        queue.enqueue(db, application_id="app-1", job_type="mystery", max_attempts=1)
        assert queue.process()["failed"] == 1

    def test_terminal_hook_error_is_contained(self, session_factory, clock, db):
        def hook(job, error):
            raise RuntimeError("hook broke")

        queue = self._queue(session_factory, clock)
        queue.register("flaky", lambda job: 1 / 0, on_terminal=hook)
        queue.enqueue(db, application_id="app-1", job_type="flaky", max_attempts=1)
        assert queue.process()["failed"] == 1

    def test_retry_job_runs_queued_job_now(self, session_factory, clock, db):
        calls = []
        queue = self._queue(session_factory, clock)
        queue.register("sync", lambda job: calls.append(job.payload))
        queue.enqueue(db, application_id="app-1", job_type="sync", payload={"document_id": "d1"})

        assert queue.retry_job("app-1", "sync") is True
        assert calls == [{"document_id": "d1"}]
        assert queue.get_queue_status()["total_jobs"] == 0

    def test_retry_job_creates_one_shot(self, session_factory, clock):
        calls = []
        queue = self._queue(session_factory, clock)
        queue.register("sync", lambda job: calls.append((job.payload, job.max_attempts)))
        assert queue.retry_job("app-7", "sync") is True
        assert calls == [({"application_id": "app-7"}, 1)]

    def test_retry_job_unknown_type(self, session_factory, clock):
        queue = self._queue(session_factory, clock)
        assert queue.retry_job("app-1", "nothing") is False

    def test_get_logs_filters_by_application(self, session_factory, clock, db):
        queue = self._queue(session_factory, clock)
        queue.register("noop", lambda job: None)
        queue.enqueue(db, application_id="app-1", job_type="noop")
        queue.enqueue(db, application_id="app-2", job_type="noop")
        queue.process()
        logs = queue.get_logs(application_id="app-2")
        assert [log.application_id for log in logs] == ["app-2"]

    def test_run_loop_processes_and_stops(self, session_factory, clock, db):
        calls = []
        queue = RetryQueue(session_factory, base_delay_ms=1000, poll_interval_seconds=0.01, clock=clock)
        queue.register("noop", lambda job: calls.append(job.id))
        queue.enqueue(db, application_id="app-1", job_type="noop")

        asyncio.run(queue.run(stop_after_iterations=2))
        assert len(calls) == 1
        assert queue.is_running is False


class TestObjectStoreBackupFailures:
    def test_persistent_store_failure_marks_backup_failed(self, make_service, failing_store, db, clock):
        store = failing_store()
        service = make_service(store)
        result = service.upload(db, "app-1", b"x" * 2048, "statement.pdf", "bank_statements")

        _drain(service.retry_queue, clock)
        assert store.put_calls == 3

        logs = service.retry_queue.get_logs(application_id="app-1")
        failed = sorted(logs, key=lambda log: log.attempt)
        assert [log.success for log in failed] == [False, False, False]
        assert failed[0].backoff_ms < failed[1].backoff_ms
        assert failed[2].terminal is True

        db.expire_all()
        assert DocumentLedger(db).get(result["document_id"]).backup_status == "failed"

        health = service.check_health(db)
        assert health["status"] in ("WARNING", "CRITICAL")
        assert health["upload_failures"] == 1

    def test_store_timeouts_count_as_failed_attempts(self, make_service, failing_store, db, clock):
        store = failing_store(delay=0.3)
        service = make_service(TimeoutTier(store, timeout_seconds=0.05))
        result = service.upload(db, "app-1", b"x" * 2048, "statement.pdf", "bank_statements")

        _drain(service.retry_queue, clock)

        logs = sorted(service.retry_queue.get_logs(application_id="app-1"), key=lambda log: log.attempt)
        assert len(logs) == 3
        assert all("timed out" in log.error_message for log in logs)
        assert logs[0].backoff_ms < logs[1].backoff_ms

        db.expire_all()
        assert DocumentLedger(db).get(result["document_id"]).backup_status == "failed"
        assert service.check_health(db)["status"] == "WARNING"

    def test_transient_failure_recovers(self, make_service, failing_store, db, clock):
        store = failing_store(failures=1)
        service = make_service(store)
        result = service.upload(db, "app-1", b"abc", "statement.pdf", "bank_statements")

        _drain(service.retry_queue, clock)
        db.expire_all()
        doc = DocumentLedger(db).get(result["document_id"])
        assert doc.backup_status == "completed"
        assert store.get(doc.object_store_key) == b"abc"
