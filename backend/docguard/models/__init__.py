from docguard.models.document import Document
from docguard.models.retry import RetryJob, RetryLogEntry
from docguard.models.recovery_log import RecoveryLogEntry
from docguard.models.alert import Alert, HealthCheck

__all__ = ["Document", "RetryJob", "RetryLogEntry", "RecoveryLogEntry", "Alert", "HealthCheck"]
