from pathlib import Path, PurePosixPath


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def sanitize_filename(name: str) -> str:
    keep = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789._-")
    return "".join(c if c in keep else "_" for c in name)


def file_extension(file_name: str, default: str = "pdf") -> str:
    suffix = PurePosixPath(file_name).suffix.lstrip(".")
    return sanitize_filename(suffix.lower()) or default


def build_storage_key(application_id: str, document_id: str, file_name: str) -> str:
    """Key used on both tiers for new writes: ``{application_id}/{document_id}.{ext}``."""
    return f"{sanitize_filename(application_id)}/{document_id}.{file_extension(file_name)}"


def key_basename(key: str) -> str:
    return PurePosixPath(key.replace("\\", "/")).name


def key_segments(key: str) -> list[str]:
    return [part for part in key.replace("\\", "/").split("/") if part]


def key_in_application(key: str, application_id: str) -> bool:
    """Match the application id against key segments, raw or sanitized."""
    segments = key_segments(key)
    return application_id in segments or sanitize_filename(application_id) in segments
