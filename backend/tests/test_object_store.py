import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from docguard.errors import ConfigurationError, NotFound, TierUnavailable
from docguard.services.object_store import S3ObjectStore


def _client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestS3ObjectStore:
    def _store(self, prefix="docguard"):
        client = MagicMock()
        return S3ObjectStore(client, "documents", prefix), client

    def test_requires_bucket(self):
        with pytest.raises(ConfigurationError):
            S3ObjectStore(MagicMock(), "")

    def test_put_uses_prefixed_key(self):
        store, client = self._store()
        assert store.put(b"pdf", "app-1/doc-1.pdf") == "app-1/doc-1.pdf"
        client.put_object.assert_called_once_with(
            Bucket="documents", Key="docguard/app-1/doc-1.pdf", Body=b"pdf"
        )

    def test_get_reads_body(self):
        store, client = self._store(prefix="")
        client.get_object.return_value = {"Body": io.BytesIO(b"content")}
        assert store.get("a/b.pdf") == b"content"
        client.get_object.assert_called_once_with(Bucket="documents", Key="a/b.pdf")

    def test_get_missing_raises_not_found(self):
        store, client = self._store()
        client.get_object.side_effect = _client_error("NoSuchKey", "GetObject")
        with pytest.raises(NotFound):
            store.get("a/b.pdf")

    def test_exists_false_on_404(self):
        store, client = self._store()
        client.head_object.side_effect = _client_error("404")
        assert store.exists("a/b.pdf") is False

    def test_access_denied_is_unavailable(self):
        store, client = self._store()
        client.head_object.side_effect = _client_error("AccessDenied")
        with pytest.raises(TierUnavailable):
            store.exists("a/b.pdf")

    def test_connection_error_is_unavailable(self):
        store, client = self._store()
        client.put_object.side_effect = EndpointConnectionError(endpoint_url="http://minio:9000")
        with pytest.raises(TierUnavailable) as exc_info:
            store.put(b"x", "a/b.pdf")
        assert exc_info.value.retryable is True

    def test_size_reads_content_length(self):
        store, client = self._store()
        client.head_object.return_value = {"ContentLength": 2048}
        assert store.size("a/b.pdf") == 2048

    def test_list_keys_strips_prefix(self):
        store, client = self._store()
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "docguard/app-2/y.pdf"}, {"Key": "docguard/app-1/x.pdf"}]},
            {},
        ]
        client.get_paginator.return_value = paginator
        assert store.list_keys() == ["app-1/x.pdf", "app-2/y.pdf"]
        paginator.paginate.assert_called_once_with(Bucket="documents", Prefix="docguard/")

    def test_delete_missing_returns_false(self):
        store, client = self._store()
        client.head_object.side_effect = _client_error("NotFound")
        assert store.delete("a/b.pdf") is False
        client.delete_object.assert_not_called()
