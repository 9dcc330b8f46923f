import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path

from docguard.errors import ContentMismatch, NotFound, StorageError, TierUnavailable
from docguard.utils.filesystem import ensure_dir

logger = logging.getLogger("docguard.storage")

_PARTIAL_SUFFIX = ".partial"


class StorageTier:
    """Uniform byte access over one physical backend."""

    name = "base"

    def put(self, data: bytes, key: str) -> str:
        raise NotImplementedError

    def get(self, key: str) -> bytes:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def size(self, key: str) -> int:
        raise NotImplementedError

    def list_keys(self, prefix: str = "") -> list[str]:
        raise NotImplementedError


class DiskStorage(StorageTier):
    name = "disk"

    def __init__(self, root: Path):
        self.root = ensure_dir(Path(root)).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key.lstrip("/")).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Key escapes storage root: {key}")
        return path

    def put(self, data: bytes, key: str) -> str:
        path = self._path(key)
        partial = path.with_name(f".{path.name}{_PARTIAL_SUFFIX}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            partial.write_bytes(data)
            written = len(partial.read_bytes())
            if written != len(data):
                partial.unlink(missing_ok=True)
                raise ContentMismatch(
                    f"Wrote {written} of {len(data)} bytes", tier=self.name, key=key
                )
            os.replace(partial, path)
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise TierUnavailable(str(exc), tier=self.name, key=key) from exc
        return path.relative_to(self.root).as_posix()

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound(f"{key} not on disk", tier=self.name, key=key) from exc
        except OSError as exc:
            raise TierUnavailable(str(exc), tier=self.name, key=key) from exc

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.is_file():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise TierUnavailable(str(exc), tier=self.name, key=key) from exc
        return True

    def size(self, key: str) -> int:
        try:
            return self._path(key).stat().st_size
        except FileNotFoundError as exc:
            raise NotFound(f"{key} not on disk", tier=self.name, key=key) from exc

    def list_keys(self, prefix: str = "") -> list[str]:
        keys = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.endswith(_PARTIAL_SUFFIX):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)


class TimeoutTier(StorageTier):
    """Bounds every call on the wrapped tier; a timeout surfaces as TierUnavailable."""

    def __init__(self, inner: StorageTier, timeout_seconds: float, *, max_workers: int = 8):
        self.inner = inner
        self.timeout_seconds = timeout_seconds
        self.name = inner.name
        # One pool per tier.
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=f"docguard-{inner.name}"
        )

    def _call(self, method: str, *args):
        future = self._executor.submit(getattr(self.inner, method), *args)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout as exc:
            future.cancel()
            logger.warning("%s.%s timed out after %.2fs", self.name, method, self.timeout_seconds)
            raise TierUnavailable(
                f"{self.name} {method} timed out after {self.timeout_seconds}s", tier=self.name
            ) from exc

    def put(self, data: bytes, key: str) -> str:
        return self._call("put", data, key)

    def get(self, key: str) -> bytes:
        return self._call("get", key)

    def exists(self, key: str) -> bool:
        return self._call("exists", key)

    def delete(self, key: str) -> bool:
        return self._call("delete", key)

    def size(self, key: str) -> int:
        return self._call("size", key)

    def list_keys(self, prefix: str = "") -> list[str]:
        return self._call("list_keys", prefix)


class UnavailableTier(StorageTier):
    """Stand-in for a tier whose configuration is unusable."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason

    def _fail(self, key: str | None = None):
        raise TierUnavailable(f"{self.name} unavailable: {self.reason}", tier=self.name, key=key)

    def put(self, data: bytes, key: str) -> str:
        self._fail(key)

    def get(self, key: str) -> bytes:
        self._fail(key)

    def exists(self, key: str) -> bool:
        self._fail(key)

    def delete(self, key: str) -> bool:
        self._fail(key)

    def size(self, key: str) -> int:
        self._fail(key)

    def list_keys(self, prefix: str = "") -> list[str]:
        self._fail()


def describe_error(exc: Exception) -> str:
    if isinstance(exc, StorageError):
        return f"{type(exc).__name__}: {exc.message}"
    return f"{type(exc).__name__}: {exc}"


def create_disk_storage(root: Path, timeout_seconds: float) -> StorageTier:
    try:
        disk = DiskStorage(root)
    except OSError as exc:
        logger.error("Disk path unusable, marking tier unavailable: %s", exc)
        return UnavailableTier("disk", str(exc))
    return TimeoutTier(disk, timeout_seconds)
