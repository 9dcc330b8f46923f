import sqlite3
from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from docguard.config import settings


class Base(DeclarativeBase):
    pass


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_path: Path | None = None):
    path = db_path or settings.db_path
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


engine = get_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


SCHEMA_SQL = """\
-- ============================================================
-- DOCUMENT LEDGER
-- ============================================================
CREATE TABLE IF NOT EXISTS documents (
    id               TEXT PRIMARY KEY,
    application_id   TEXT NOT NULL,
    file_name        TEXT NOT NULL,
    document_type    TEXT NOT NULL,
    file_size_bytes  INTEGER,
    mime_type        TEXT,
    disk_path        TEXT,
    object_store_key TEXT,
    checksum_sha256  TEXT,
    backup_status    TEXT NOT NULL DEFAULT 'pending'
                     CHECK(backup_status IN ('pending','completed','failed')),
    verified         INTEGER NOT NULL DEFAULT 0,
    version          INTEGER NOT NULL DEFAULT 1,
    created_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    updated_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_documents_application ON documents(application_id);
CREATE INDEX IF NOT EXISTS idx_documents_backup ON documents(backup_status);
CREATE INDEX IF NOT EXISTS idx_documents_disk_path ON documents(disk_path);

-- ============================================================
-- RETRY QUEUE
-- ============================================================
CREATE TABLE IF NOT EXISTS retry_jobs (
    id             TEXT PRIMARY KEY,
    application_id TEXT NOT NULL,
    job_type       TEXT NOT NULL,
    payload        TEXT NOT NULL DEFAULT '{}',
    attempt        INTEGER NOT NULL DEFAULT 0,
    max_attempts   INTEGER NOT NULL,
    last_error     TEXT,
    scheduled_at   REAL NOT NULL,
    backoff_ms     INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_retry_jobs_due ON retry_jobs(scheduled_at);
CREATE INDEX IF NOT EXISTS idx_retry_jobs_application ON retry_jobs(application_id, job_type);

CREATE TABLE IF NOT EXISTS retry_logs (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id            TEXT NOT NULL,
    application_id    TEXT NOT NULL,
    job_type          TEXT NOT NULL,
    attempt           INTEGER NOT NULL,
    success           INTEGER NOT NULL,
    terminal          INTEGER NOT NULL DEFAULT 0,
    error_message     TEXT,
    backoff_ms        INTEGER,
    next_scheduled_at REAL,
    created_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_retry_logs_job ON retry_logs(job_id);
CREATE INDEX IF NOT EXISTS idx_retry_logs_created ON retry_logs(created_at);

-- ============================================================
-- RECOVERY LOG
-- ============================================================
CREATE TABLE IF NOT EXISTS recovery_logs (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id    TEXT NOT NULL,
    application_id TEXT NOT NULL,
    file_name      TEXT,
    status         TEXT NOT NULL
                   CHECK(status IN ('MISSING_DETECTED','RECOVERED','RECOVERY_FAILED')),
    strategy       TEXT,
    old_path       TEXT,
    new_path       TEXT,
    details        TEXT,
    created_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_recovery_logs_document ON recovery_logs(document_id);

-- ============================================================
-- HEALTH & ALERTS
-- ============================================================
CREATE TABLE IF NOT EXISTS health_checks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    status          TEXT NOT NULL CHECK(status IN ('HEALTHY','WARNING','CRITICAL')),
    total_documents INTEGER NOT NULL,
    at_risk         INTEGER NOT NULL,
    failed          INTEGER NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_health_checks_created ON health_checks(created_at);

CREATE TABLE IF NOT EXISTS alerts (
    id              TEXT PRIMARY KEY,
    severity        TEXT NOT NULL CHECK(severity IN ('WARNING','CRITICAL')),
    message         TEXT NOT NULL,
    details         TEXT NOT NULL DEFAULT '{}',
    created_at      TEXT NOT NULL,
    resolved_at     TEXT,
    resolved_by     TEXT,
    resolution_note TEXT
);

CREATE INDEX IF NOT EXISTS idx_alerts_open ON alerts(resolved_at, severity);
"""


MIGRATIONS = [
    # v0.2: optimistic update counter
    "ALTER TABLE documents ADD COLUMN version INTEGER NOT NULL DEFAULT 1",
    # v0.3: terminal marker on retry log
    "ALTER TABLE retry_logs ADD COLUMN terminal INTEGER NOT NULL DEFAULT 0",
]


def init_db(db_path: Path | None = None):
    path = db_path or settings.db_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.executescript(SCHEMA_SQL)
    # Run migrations idempotently (ALTER TABLE fails if column exists)
    for migration in MIGRATIONS:
        try:
            conn.execute(migration)
            conn.commit()
        except sqlite3.OperationalError:
            pass  # column already exists
    conn.close()
