import threading
import time
from pathlib import Path

import pytest

from docguard.errors import ContentMismatch, NotFound, TierUnavailable
from docguard.services.object_store import LocalObjectStore, create_object_store
from docguard.services.storage import DiskStorage, TimeoutTier, UnavailableTier, create_disk_storage


class SlowTier(DiskStorage):
    def __init__(self, root, delay: float):
        super().__init__(root)
        self.delay = delay

    def put(self, data: bytes, key: str) -> str:
        time.sleep(self.delay)
        return super().put(data, key)


class HangingStore(LocalObjectStore):
    def __init__(self, root, bucket, release: threading.Event):
        super().__init__(root, bucket)
        self.release = release

    def exists(self, key: str) -> bool:
        self.release.wait(5)
        return False


class TestDiskStorage:
    def test_put_then_get(self, tmp_path):
        disk = DiskStorage(tmp_path / "uploads")
        key = disk.put(b"hello world", "app-1/doc-1.pdf")
        assert key == "app-1/doc-1.pdf"
        assert disk.get(key) == b"hello world"
        assert disk.exists(key)
        assert disk.size(key) == 11

    def test_put_overwrites_atomically(self, tmp_path):
        disk = DiskStorage(tmp_path / "uploads")
        disk.put(b"first", "a/b.pdf")
        disk.put(b"second version", "a/b.pdf")
        assert disk.get("a/b.pdf") == b"second version"
        # No partial files linger after a successful write
        assert disk.list_keys() == ["a/b.pdf"]

    def test_get_missing_raises_not_found(self, tmp_path):
        disk = DiskStorage(tmp_path / "uploads")
        with pytest.raises(NotFound):
            disk.get("nope.pdf")
        assert disk.exists("nope.pdf") is False

    def test_delete(self, tmp_path):
        disk = DiskStorage(tmp_path / "uploads")
        disk.put(b"x", "k.pdf")
        assert disk.delete("k.pdf") is True
        assert disk.delete("k.pdf") is False

    def test_key_cannot_escape_root(self, tmp_path):
        disk = DiskStorage(tmp_path / "uploads")
        with pytest.raises(ValueError):
            disk.put(b"x", "../outside.pdf")

    def test_list_keys_ignores_partial_files(self, tmp_path):
        disk = DiskStorage(tmp_path / "uploads")
        disk.put(b"x", "app-1/a.pdf")
        (tmp_path / "uploads" / "app-1" / ".b.pdf.partial").write_bytes(b"half")
        assert disk.list_keys() == ["app-1/a.pdf"]
        assert disk.list_keys(prefix="app-2") == []

    def test_length_mismatch_removes_partial(self, tmp_path, monkeypatch):
        disk = DiskStorage(tmp_path / "uploads")
        monkeypatch.setattr(Path, "read_bytes", lambda self: b"short")
        with pytest.raises(ContentMismatch):
            disk.put(b"much longer content", "app-1/a.pdf")
        monkeypatch.undo()

        assert not (tmp_path / "uploads" / "app-1" / "a.pdf").exists()
        assert not (tmp_path / "uploads" / "app-1" / ".a.pdf.partial").exists()
        assert disk.list_keys() == []


class TestTimeoutTier:
    def test_passes_through_fast_calls(self, tmp_path):
        tier = TimeoutTier(DiskStorage(tmp_path / "uploads"), timeout_seconds=2.0)
        assert tier.name == "disk"
        tier.put(b"abc", "x.pdf")
        assert tier.get("x.pdf") == b"abc"

    def test_slow_call_raises_tier_unavailable(self, tmp_path):
        tier = TimeoutTier(SlowTier(tmp_path / "uploads", delay=0.5), timeout_seconds=0.05)
        with pytest.raises(TierUnavailable) as exc_info:
            tier.put(b"abc", "x.pdf")
        assert exc_info.value.retryable is True
        assert "timed out" in exc_info.value.message

    def test_inner_errors_propagate(self, tmp_path):
        tier = TimeoutTier(DiskStorage(tmp_path / "uploads"), timeout_seconds=2.0)
        with pytest.raises(NotFound):
            tier.get("missing.pdf")

    def test_hung_store_does_not_starve_disk(self, tmp_path):
        release = threading.Event()
        store = TimeoutTier(HangingStore(tmp_path / "store", "documents", release), timeout_seconds=0.05)
        disk = TimeoutTier(DiskStorage(tmp_path / "uploads"), timeout_seconds=1.0)
        try:
            for i in range(10):
                with pytest.raises(TierUnavailable):
                    store.exists(f"app-1/{i}.pdf")
            assert disk.put(b"hello", "app-1/a.pdf") == "app-1/a.pdf"
            assert disk.get("app-1/a.pdf") == b"hello"
        finally:
            release.set()


class TestUnavailableTier:
    def test_every_call_raises(self):
        tier = UnavailableTier("object_store", "no bucket")
        for call in (lambda: tier.get("k"), lambda: tier.exists("k"), lambda: tier.list_keys()):
            with pytest.raises(TierUnavailable):
                call()


class TestCreateObjectStore:
    def test_local_backend_is_bounded(self, test_settings):
        store = create_object_store(test_settings)
        assert isinstance(store, TimeoutTier)
        assert isinstance(store.inner, LocalObjectStore)
        assert store.name == "object_store"

    def test_disabled_backend(self, test_settings):
        test_settings.object_store_backend = "disabled"
        assert isinstance(create_object_store(test_settings), UnavailableTier)

    def test_unknown_backend_downgrades(self, test_settings):
        test_settings.object_store_backend = "ftp"
        store = create_object_store(test_settings)
        assert isinstance(store, UnavailableTier)
        assert "ftp" in store.reason

    def test_s3_without_bucket_downgrades(self, test_settings):
        test_settings.object_store_backend = "s3"
        test_settings.object_store_bucket = ""
        assert isinstance(create_object_store(test_settings), UnavailableTier)

    def test_s3_with_half_credentials_downgrades(self, test_settings):
        test_settings.object_store_backend = "s3"
        test_settings.object_store_access_key = "AKIA"
        assert isinstance(create_object_store(test_settings), UnavailableTier)


class TestCreateDiskStorage:
    def test_usable_path_is_bounded(self, tmp_path):
        disk = create_disk_storage(tmp_path / "uploads", 2.0)
        assert isinstance(disk, TimeoutTier)
        assert disk.name == "disk"

    def test_unusable_path_marks_tier_unavailable(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_bytes(b"not a directory")
        disk = create_disk_storage(blocker / "uploads", 2.0)
        assert isinstance(disk, UnavailableTier)
        assert disk.name == "disk"
        with pytest.raises(TierUnavailable):
            disk.put(b"x", "app-1/a.pdf")

    def test_service_starts_with_unusable_data_path(self, tmp_path, session_factory):
        from docguard.config import Settings
        from docguard.services.reliability_service import ReliabilityService

        blocker = tmp_path / "blocker"
        blocker.write_bytes(b"not a directory")
        service = ReliabilityService(Settings(data_path=blocker), session_factory)
        assert isinstance(service.disk, UnavailableTier)
        assert isinstance(service.object_store, UnavailableTier)
