from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_path: Path = Path.home() / "DocGuard"
    # Object store: "local" (filesystem bucket), "s3", or "disabled".
    object_store_backend: str = "local"
    object_store_bucket: str = "documents"
    object_store_prefix: str = ""
    object_store_root: Path | None = None
    object_store_endpoint: str = ""
    object_store_region: str = ""
    object_store_access_key: str = ""
    object_store_secret_key: str = ""
    # Every tier call is bounded; a timeout counts as a failed attempt.
    tier_timeout_seconds: float = 10.0
    retry_base_delay_ms: int = 30_000
    retry_max_attempts: int = 3
    retry_poll_interval_seconds: float = 5.0
    max_upload_bytes: int = 25 * 1024 * 1024  # 25 MiB
    recovery_similarity_threshold: float = 0.7
    alert_finding_threshold: int = 10
    alert_upload_failure_threshold: int = 0
    alert_window_hours: int = 24
    log_level: str = "INFO"
    api_prefix: str = "/api/v1"
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def db_path(self) -> Path:
        return self.data_path / "db.sqlite"

    @property
    def uploads_path(self) -> Path:
        return self.data_path / "uploads"

    @property
    def object_store_path(self) -> Path:
        return self.object_store_root or self.data_path / "object-store"

    model_config = {"env_prefix": "DOCGUARD_"}


settings = Settings()
