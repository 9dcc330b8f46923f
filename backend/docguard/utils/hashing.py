import hashlib
import hmac
from pathlib import Path


def sha256_file(file_path: Path) -> str:
    h = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def validate_checksum(data: bytes, expected: str | None) -> bool:
    """Recompute the digest of ``data`` and compare it with ``expected``."""
    if not expected:
        return False
    return hmac.compare_digest(sha256_bytes(data), expected.strip().lower())
