class StorageError(Exception):
    """Base for failures reported by a storage tier."""

    retryable = False

    def __init__(self, message: str, *, tier: str | None = None, key: str | None = None):
        super().__init__(message)
        self.message = message
        self.tier = tier
        self.key = key


class TierUnavailable(StorageError):
    """Tier could not be reached, timed out, or is not configured. Retryable."""

    retryable = True


class ContentMismatch(StorageError):
    """Checksum or size disagreement. Never corrected automatically."""


class NotFound(StorageError):
    """Expected content is absent from the tier."""


class ConfigurationError(StorageError):
    """Missing credentials, bucket or path for a tier."""


class DocumentNotFound(LookupError):
    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class StaleDocumentError(RuntimeError):
    """A single-row optimistic update lost to a concurrent writer."""

    def __init__(self, document_id: str, expected_version: int):
        super().__init__(
            f"Document {document_id} changed since version {expected_version}"
        )
        self.document_id = document_id
        self.expected_version = expected_version
