"""S3 access for the model sync worker.

This module wraps the bucket being mirrored: metadata lookups, the
download-verify-install protocol, the staleness decision for local copies
and the listing used by full reconciliation.

Downloads are staged next to their final path and only renamed into place
after the staged file has been closed and verified, so readers of the
models directory never see a partially written model.
"""

import base64
import binascii
import os
import time
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from botocore.exceptions import ClientError

from model_sync.error_handler import retryable_operation
from model_sync.events import DownloadResult, ObjectInfo
from model_sync.exceptions import (
    InsufficientSpaceError,
    IntegrityError,
    ObjectNotFoundError,
    S3OperationError,
)
from model_sync.file_validator import (
    MODEL_EXTENSIONS,
    check_disk_space,
    cleanup_file,
    is_model_file,
    verify_file_integrity,
)
from model_sync.logging_config import create_logger
from model_sync.utils import create_aws_client

logger = create_logger(__name__)

STAGING_SUFFIX = ".tmp"
DOWNLOAD_CHUNK_SIZE = 1024 * 1024
PROGRESS_LOG_BYTES = 10 * 1024 * 1024
NOT_FOUND_CODES = {"404", "NotFound", "NoSuchKey"}


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "") in NOT_FOUND_CODES


def _sha256_from_checksum(checksum: Optional[str]) -> Optional[str]:
    """Convert an S3 full-object ChecksumSHA256 to a hex digest.

    Composite multipart checksums ("<b64>-<parts>") are not digests of the
    object bytes and yield None.
    """
    if not checksum or "-" in checksum:
        return None
    try:
        return base64.b64decode(checksum, validate=True).hex()
    except (binascii.Error, ValueError):
        return None


@retryable_operation(max_attempts=3, initial_delay=1.0)
def _head_object(s3_client, bucket_name: str, key: str) -> dict:
    """Fetch object metadata with retry logic."""
    return s3_client.head_object(Bucket=bucket_name, Key=key, ChecksumMode="ENABLED")


class S3Service:
    """Read-only client for the bucket mirrored into the models directory.

    Attributes:
        bucket_name: Bucket being mirrored
        s3_client: boto3 S3 client
        extensions: Suffixes of keys worth syncing
        page_size: Keys requested per listing page
    """

    def __init__(
        self,
        bucket_name: str,
        region_name: str = "us-west-2",
        endpoint_url: Optional[str] = None,
        s3_client: Optional[Any] = None,
        extensions: Iterable[str] = MODEL_EXTENSIONS,
        page_size: int = 1000,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ):
        self.bucket_name = bucket_name
        self.s3_client = s3_client or create_aws_client("s3", region_name, endpoint_url)
        self.extensions = frozenset(extensions)
        self.page_size = page_size
        self.chunk_size = chunk_size

    def get_object_info(self, key: str) -> Optional[ObjectInfo]:
        """Fetch metadata for an object.

        Args:
            key: Object key

        Returns:
            ObjectInfo, or None if the object does not exist

        Raises:
            ClientError: For any failure other than a missing object
        """
        try:
            response = _head_object(self.s3_client, self.bucket_name, key)
        except ClientError as e:
            if _is_not_found(e):
                return None
            logger.error(f"Error getting S3 object info for {key}: {e}")
            raise

        checksum_type = response.get("ChecksumType")
        sha256 = None
        if checksum_type in (None, "FULL_OBJECT"):
            sha256 = _sha256_from_checksum(response.get("ChecksumSHA256"))

        return ObjectInfo(
            size=response.get("ContentLength", 0),
            last_modified=response.get("LastModified") or datetime.now(timezone.utc),
            etag=(response.get("ETag") or "").strip('"'),
            sha256=sha256,
        )

    def download_file(self, key: str, local_path: str) -> DownloadResult:
        """Download an object and install it at local_path.

        The body is streamed into ``local_path + ".tmp"``, which is flushed
        and closed before it is verified against the remote size (and
        SHA256 when S3 has one), then renamed over local_path. Any failure
        removes the staging file.

        Args:
            key: Object key
            local_path: Final location of the model file

        Returns:
            DownloadResult. Failures are reported, not raised, and carry
            the bytes transferred so far.
        """
        start_time = time.monotonic()
        downloaded_size = 0
        staging_path = f"{local_path}{STAGING_SUFFIX}"
        staged = False

        try:
            logger.info(f"Starting download from S3: {key} -> {local_path}")

            object_info = self.get_object_info(key)
            if object_info is None:
                raise ObjectNotFoundError(f"S3 object not found: {key}")

            target_dir = os.path.dirname(local_path)
            os.makedirs(target_dir, exist_ok=True)

            if not check_disk_space(target_dir, object_info.size):
                raise InsufficientSpaceError(
                    f"Insufficient disk space for download: "
                    f"{object_info.size} bytes required"
                )

            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            body = response.get("Body")
            if body is None:
                raise S3OperationError(f"Empty response body from S3: {key}")

            staged = True
            next_progress = PROGRESS_LOG_BYTES
            try:
                with open(staging_path, "wb") as staging_file:
                    for chunk in body.iter_chunks(self.chunk_size):
                        staging_file.write(chunk)
                        downloaded_size += len(chunk)
                        if downloaded_size >= next_progress:
                            progress = downloaded_size / max(object_info.size, 1) * 100
                            logger.debug(
                                f"Download progress for {key}: {progress:.1f}% "
                                f"({downloaded_size}/{object_info.size})"
                            )
                            next_progress += PROGRESS_LOG_BYTES
                    staging_file.flush()
                    os.fsync(staging_file.fileno())
            finally:
                body.close()

            # The staging file is closed at this point; only now may it be checked
            if not verify_file_integrity(staging_path, object_info.size, object_info.sha256):
                raise IntegrityError(f"Downloaded file failed integrity check: {key}")

            os.replace(staging_path, local_path)
            staged = False

            duration = time.monotonic() - start_time
            speed_mbps = (downloaded_size / 1024 / 1024) / duration if duration > 0 else 0.0
            logger.info(
                f"Successfully downloaded {key} ({downloaded_size} bytes "
                f"in {duration:.2f}s, {speed_mbps:.2f} MB/s)"
            )
            return DownloadResult(success=True, size=downloaded_size, duration=duration)

        except Exception as e:
            if staged:
                cleanup_file(staging_path)

            duration = time.monotonic() - start_time
            logger.error(
                f"Failed to download {key} to {local_path} after {downloaded_size} "
                f"bytes ({duration:.2f}s): {type(e).__name__}: {e}"
            )
            return DownloadResult(
                success=False,
                size=downloaded_size,
                duration=duration,
                error=str(e),
            )

    def should_update_file(self, key: str, local_path: str) -> bool:
        """Decide whether the local copy of an object is missing or stale.

        Unexpected errors answer True: a redundant download is cheaper
        than a silently skipped update.

        Args:
            key: Object key
            local_path: Local copy of the object

        Returns:
            True if the object should be downloaded
        """
        try:
            if not os.path.exists(local_path):
                logger.debug(f"Local file does not exist, update needed: {local_path}")
                return True

            object_info = self.get_object_info(key)
            if object_info is None:
                logger.warning(f"S3 object not found, keeping local copy: {key}")
                return False

            local_stats = os.stat(local_path)

            if local_stats.st_size != object_info.size:
                logger.debug(
                    f"File size differs, update needed: {key} "
                    f"(s3={object_info.size}, local={local_stats.st_size})"
                )
                return True

            local_modified = datetime.fromtimestamp(local_stats.st_mtime, tz=timezone.utc)
            remote_modified = object_info.last_modified
            if remote_modified.tzinfo is None:
                remote_modified = remote_modified.replace(tzinfo=timezone.utc)

            if remote_modified > local_modified:
                logger.debug(
                    f"S3 file is newer, update needed: {key} "
                    f"(s3={remote_modified.isoformat()}, local={local_modified.isoformat()})"
                )
                return True

            logger.debug(f"File is up to date: {local_path}")
            return False

        except Exception as e:
            logger.error(f"Error checking if {key} should update, assuming yes: {e}")
            return True

    @retryable_operation(max_attempts=3, initial_delay=2.0)
    def list_all_models(self) -> List[str]:
        """List every model file in the bucket, following all pages.

        Returns:
            Keys accepted by is_model_file, in listing order
        """
        models: List[str] = []
        pages = 0
        paginator = self.s3_client.get_paginator("list_objects_v2")

        for page in paginator.paginate(
            Bucket=self.bucket_name,
            PaginationConfig={"PageSize": self.page_size},
        ):
            pages += 1
            for obj in page.get("Contents", []):
                key = obj.get("Key")
                if key and is_model_file(key, self.extensions):
                    models.append(key)

        logger.info(
            f"Found {len(models)} model files in S3 bucket {self.bucket_name} "
            f"({pages} pages)"
        )
        return models
