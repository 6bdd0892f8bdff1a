"""Unit tests for S3Service with a mocked boto3 client.

Tests cover:
- Metadata lookups and checksum decoding
- The download, verify and install protocol, including failure cleanup
- Staleness decisions for local copies
- Paginated listing
"""

import base64
import hashlib
import os
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from model_sync.s3_service import S3Service, STAGING_SUFFIX, _sha256_from_checksum

KEY = "essential/voice/model.bin"


def _client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def _head(size: int, last_modified: datetime = None, checksum: str = None) -> dict:
    response = {
        "ContentLength": size,
        "LastModified": last_modified or datetime(2024, 1, 1, tzinfo=timezone.utc),
        "ETag": '"abc123"',
    }
    if checksum:
        response["ChecksumSHA256"] = checksum
    return response


def _body(*chunks, error: Exception = None) -> MagicMock:
    def _iter(chunk_size):
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error

    body = MagicMock()
    body.iter_chunks.side_effect = _iter
    return body


def _b64_sha256(data: bytes) -> str:
    return base64.b64encode(hashlib.sha256(data).digest()).decode()


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def service(client) -> S3Service:
    return S3Service("test-voice-models", s3_client=client)


@pytest.fixture
def final_path(tmp_path) -> str:
    return str(tmp_path / "essential" / "voice" / "model.bin")


# ============================================================================
# Metadata Tests
# ============================================================================

@pytest.mark.unit
class TestGetObjectInfo:
    """Test remote metadata lookups."""

    def test_returns_metadata(self, service, client):
        client.head_object.return_value = _head(1000)

        info = service.get_object_info(KEY)

        assert info.size == 1000
        assert info.etag == "abc123"
        assert info.sha256 is None
        client.head_object.assert_called_once_with(
            Bucket="test-voice-models", Key=KEY, ChecksumMode="ENABLED"
        )

    @pytest.mark.parametrize("code", ["404", "NotFound", "NoSuchKey"])
    def test_missing_object_returns_none(self, service, client, code):
        client.head_object.side_effect = _client_error(code)

        assert service.get_object_info(KEY) is None

    def test_other_errors_raise(self, service, client):
        client.head_object.side_effect = _client_error("AccessDenied")

        with pytest.raises(ClientError):
            service.get_object_info(KEY)

    def test_full_object_checksum_decoded(self, service, client):
        client.head_object.return_value = _head(7, checksum=_b64_sha256(b"weights"))

        info = service.get_object_info(KEY)

        assert info.sha256 == hashlib.sha256(b"weights").hexdigest()

    def test_composite_checksum_ignored(self, service, client):
        response = _head(7, checksum=_b64_sha256(b"weights") + "-3")
        response["ChecksumType"] = "COMPOSITE"
        client.head_object.return_value = response

        assert service.get_object_info(KEY).sha256 is None

    @pytest.mark.parametrize("checksum", [None, "", "abc-2", "not base64!"])
    def test_sha256_from_checksum_rejects(self, checksum):
        assert _sha256_from_checksum(checksum) is None


# ============================================================================
# Download Protocol Tests
# ============================================================================

@pytest.mark.unit
class TestDownloadFile:
    """Test the download, verify and install protocol."""

    def test_successful_download(self, service, client, final_path):
        data = b"a" * 600 + b"b" * 400
        client.head_object.return_value = _head(len(data))
        client.get_object.return_value = {"Body": _body(data[:600], data[600:])}

        result = service.download_file(KEY, final_path)

        assert result.success
        assert result.size == 1000
        assert result.error is None
        assert result.duration >= 0
        with open(final_path, "rb") as f:
            assert f.read() == data
        assert not os.path.exists(final_path + STAGING_SUFFIX)
        client.get_object.return_value["Body"].close.assert_called_once()

    def test_verified_only_after_all_bytes_are_flushed(self, service, client, final_path):
        data = b"x" * 4096
        client.head_object.return_value = _head(len(data))
        client.get_object.return_value = {"Body": _body(data[:1000], data[1000:])}
        seen = {}

        def _verify(path, expected_size=None, expected_hash=None):
            seen["path"] = path
            seen["size_on_disk"] = os.path.getsize(path)
            return True

        with patch("model_sync.s3_service.verify_file_integrity", side_effect=_verify):
            result = service.download_file(KEY, final_path)

        assert result.success
        assert seen["path"] == final_path + STAGING_SUFFIX
        assert seen["size_on_disk"] == len(data)

    def test_crash_mid_stream_leaves_no_files(self, service, client, final_path):
        client.head_object.return_value = _head(1000)
        client.get_object.return_value = {
            "Body": _body(b"12345", error=OSError("Connection reset by peer"))
        }

        result = service.download_file(KEY, final_path)

        assert not result.success
        assert result.size == 5
        assert "Connection reset" in result.error
        assert not os.path.exists(final_path)
        assert not os.path.exists(final_path + STAGING_SUFFIX)

    def test_crash_mid_stream_keeps_previous_version(self, service, client, final_path):
        os.makedirs(os.path.dirname(final_path))
        with open(final_path, "wb") as f:
            f.write(b"previous version")
        client.head_object.return_value = _head(1000)
        client.get_object.return_value = {"Body": _body(b"12345", error=OSError("reset"))}

        result = service.download_file(KEY, final_path)

        assert not result.success
        with open(final_path, "rb") as f:
            assert f.read() == b"previous version"
        assert not os.path.exists(final_path + STAGING_SUFFIX)

    def test_size_mismatch_fails_integrity(self, service, client, final_path):
        client.head_object.return_value = _head(10)
        client.get_object.return_value = {"Body": _body(b"12345")}

        result = service.download_file(KEY, final_path)

        assert not result.success
        assert result.size == 5
        assert "integrity check" in result.error
        assert not os.path.exists(final_path)
        assert not os.path.exists(final_path + STAGING_SUFFIX)

    def test_checksum_match(self, service, client, final_path):
        client.head_object.return_value = _head(7, checksum=_b64_sha256(b"weights"))
        client.get_object.return_value = {"Body": _body(b"weights")}

        assert service.download_file(KEY, final_path).success

    def test_checksum_mismatch(self, service, client, final_path):
        client.head_object.return_value = _head(7, checksum=_b64_sha256(b"WEIGHTS"))
        client.get_object.return_value = {"Body": _body(b"weights")}

        result = service.download_file(KEY, final_path)

        assert not result.success
        assert not os.path.exists(final_path)

    def test_missing_object(self, service, client, final_path):
        client.head_object.side_effect = _client_error("404")

        result = service.download_file(KEY, final_path)

        assert not result.success
        assert result.size == 0
        assert "not found" in result.error
        client.get_object.assert_not_called()

    def test_insufficient_space(self, service, client, final_path):
        client.head_object.return_value = _head(10 ** 12)

        with patch("model_sync.s3_service.check_disk_space", return_value=False):
            result = service.download_file(KEY, final_path)

        assert not result.success
        assert "Insufficient disk space" in result.error
        client.get_object.assert_not_called()
        assert not os.path.exists(final_path + STAGING_SUFFIX)

    def test_get_object_failure(self, service, client, final_path):
        client.head_object.return_value = _head(10)
        client.get_object.side_effect = _client_error("AccessDenied", "GetObject")

        result = service.download_file(KEY, final_path)

        assert not result.success
        assert result.size == 0


# ============================================================================
# Staleness Tests
# ============================================================================

@pytest.mark.unit
class TestShouldUpdateFile:
    """Test the local staleness decision."""

    def _write_local(self, path: str, data: bytes, mtime: float = None) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        if mtime is not None:
            os.utime(path, (mtime, mtime))

    def test_missing_local_file(self, service, client, final_path):
        assert service.should_update_file(KEY, final_path)
        client.head_object.assert_not_called()

    def test_remote_absent_keeps_local(self, service, client, final_path):
        self._write_local(final_path, b"12345")
        client.head_object.side_effect = _client_error("404")

        assert not service.should_update_file(KEY, final_path)

    def test_size_differs(self, service, client, final_path):
        self._write_local(final_path, b"12345")
        client.head_object.return_value = _head(6, last_modified=datetime(2000, 1, 1, tzinfo=timezone.utc))

        assert service.should_update_file(KEY, final_path)

    def test_remote_newer(self, service, client, final_path):
        self._write_local(final_path, b"12345", mtime=time.time() - 3600)
        client.head_object.return_value = _head(
            5, last_modified=datetime.now(timezone.utc) - timedelta(minutes=1)
        )

        assert service.should_update_file(KEY, final_path)

    def test_up_to_date(self, service, client, final_path):
        self._write_local(final_path, b"12345")
        client.head_object.return_value = _head(
            5, last_modified=datetime.now(timezone.utc) - timedelta(hours=1)
        )

        assert not service.should_update_file(KEY, final_path)

    def test_naive_remote_timestamp_treated_as_utc(self, service, client, final_path):
        self._write_local(final_path, b"12345")
        client.head_object.return_value = _head(5, last_modified=datetime(2000, 1, 1))

        assert not service.should_update_file(KEY, final_path)

    def test_unexpected_error_answers_yes(self, service, client, final_path):
        self._write_local(final_path, b"12345")
        client.head_object.side_effect = _client_error("AccessDenied")

        assert service.should_update_file(KEY, final_path)


# ============================================================================
# Listing Tests
# ============================================================================

@pytest.mark.unit
class TestListAllModels:
    """Test paginated listing."""

    def test_follows_all_pages_and_filters(self, client):
        service = S3Service("test-voice-models", s3_client=client, page_size=2)
        paginator = client.get_paginator.return_value
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "essential/voice/a.bin"}, {"Key": "essential/voice/README.md"}]},
            {"Contents": [{"Key": "optional/g2p/b.onnx"}, {"Key": "essential/voice/"}]},
            {},
        ]

        models = service.list_all_models()

        assert models == ["essential/voice/a.bin", "optional/g2p/b.onnx"]
        client.get_paginator.assert_called_once_with("list_objects_v2")
        paginator.paginate.assert_called_once_with(
            Bucket="test-voice-models", PaginationConfig={"PageSize": 2}
        )

    def test_empty_bucket(self, service, client):
        client.get_paginator.return_value.paginate.return_value = [{"KeyCount": 0}]

        assert service.list_all_models() == []

    @patch("model_sync.error_handler.time.sleep")
    def test_transient_listing_error_is_retried(self, mock_sleep, service, client):
        paginator = client.get_paginator.return_value
        paginator.paginate.side_effect = [
            _client_error("SlowDown", "ListObjectsV2"),
            [{"Contents": [{"Key": "essential/voice/a.bin"}]}],
        ]

        assert service.list_all_models() == ["essential/voice/a.bin"]
        assert mock_sleep.call_count == 1
