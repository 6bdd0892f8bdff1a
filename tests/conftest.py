"""Pytest configuration and shared fixtures for the model sync worker tests.

This module provides fixtures for:
- Mock AWS S3 and SQS services using moto
- Worker settings pointing at the mocked services
- Temporary models directories
- S3 event notification payloads
"""

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional

import boto3
import pytest
from moto import mock_aws

from model_sync.config import SyncSettings
from model_sync.health import HealthCheckService
from model_sync.s3_service import S3Service
from model_sync.sync_service import ModelSyncService


# ============================================================================
# Environment and Configuration Fixtures
# ============================================================================

@pytest.fixture(scope="session")
def test_env_vars() -> Dict[str, str]:
    """Provide test environment variables.

    Returns:
        Dictionary of environment variables for testing
    """
    return {
        "AWS_ACCESS_KEY_ID": "testing",
        "AWS_SECRET_ACCESS_KEY": "testing",
        "AWS_SECURITY_TOKEN": "testing",
        "AWS_SESSION_TOKEN": "testing",
        "AWS_DEFAULT_REGION": "us-east-1",
        "AWS_REGION": "us-east-1",
        "S3_BUCKET_NAME": "test-voice-models",
    }


@pytest.fixture(scope="function")
def mock_env(test_env_vars: Dict[str, str], monkeypatch) -> None:
    """Mock environment variables for testing."""
    for key, value in test_env_vars.items():
        monkeypatch.setenv(key, value)


# ============================================================================
# AWS Mocking Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def aws_credentials(test_env_vars: Dict[str, str], monkeypatch):
    """Mock AWS credentials for moto."""
    for key, value in test_env_vars.items():
        if key.startswith("AWS_"):
            monkeypatch.setenv(key, value)


@pytest.fixture(scope="function")
def aws_mock(aws_credentials):
    """Provide mocked AWS services using moto.

    Yields:
        Mocked AWS context
    """
    with mock_aws():
        yield


@pytest.fixture(scope="function")
def s3_client(aws_mock, test_env_vars: Dict[str, str]):
    """Provide mocked S3 client."""
    return boto3.client("s3", region_name=test_env_vars["AWS_DEFAULT_REGION"])


@pytest.fixture(scope="function")
def s3_bucket(s3_client, test_env_vars: Dict[str, str]) -> str:
    """Create a test S3 bucket.

    Returns:
        S3 bucket name
    """
    bucket_name = test_env_vars["S3_BUCKET_NAME"]
    s3_client.create_bucket(Bucket=bucket_name)
    return bucket_name


@pytest.fixture(scope="function")
def sqs_client(aws_mock, test_env_vars: Dict[str, str]):
    """Provide mocked SQS client."""
    return boto3.client("sqs", region_name=test_env_vars["AWS_DEFAULT_REGION"])


@pytest.fixture(scope="function")
def update_queue_url(sqs_client) -> str:
    """Create the queue S3 change notifications arrive on."""
    return sqs_client.create_queue(QueueName="model-updates")["QueueUrl"]


@pytest.fixture(scope="function")
def notification_queue_url(sqs_client) -> str:
    """Create the queue application pods listen on."""
    return sqs_client.create_queue(QueueName="model-notifications")["QueueUrl"]


# ============================================================================
# Worker Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def models_dir(tmp_path: Path) -> Path:
    """Provide an empty local models directory."""
    path = tmp_path / "models"
    path.mkdir()
    return path


@pytest.fixture(scope="function")
def settings(
    models_dir: Path,
    s3_bucket: str,
    update_queue_url: str,
    notification_queue_url: str,
) -> SyncSettings:
    """Settings pointing at the mocked bucket and queues, with no waiting."""
    return SyncSettings(
        bucket_name=s3_bucket,
        update_queue_url=update_queue_url,
        notification_queue_url=notification_queue_url,
        models_base_path=str(models_dir),
        aws_region="us-east-1",
        wait_time_seconds=0,
        poll_interval=0,
        error_backoff=0,
    )


@pytest.fixture(scope="function")
def s3_service(s3_client, s3_bucket: str) -> S3Service:
    """S3Service bound to the mocked bucket."""
    return S3Service(s3_bucket, s3_client=s3_client)


@pytest.fixture(scope="function")
def health_service() -> HealthCheckService:
    return HealthCheckService()


@pytest.fixture(scope="function")
def sync_service(
    settings: SyncSettings,
    s3_service: S3Service,
    health_service: HealthCheckService,
    sqs_client,
) -> ModelSyncService:
    """ModelSyncService wired to the mocked S3 bucket and SQS queues."""
    return ModelSyncService(
        settings,
        s3_service=s3_service,
        health_service=health_service,
        sqs_client=sqs_client,
    )


# ============================================================================
# Event Payload Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def make_s3_record() -> Callable[..., Dict]:
    """Provide a builder for S3 event notification records."""

    def _make(
        event_name: str,
        key: str,
        size: int = 0,
        bucket: str = "test-voice-models",
        etag: str = "0123456789abcdef",
    ) -> Dict:
        return {
            "eventVersion": "2.1",
            "eventSource": "aws:s3",
            "eventTime": "2024-05-01T12:00:00.000Z",
            "eventName": event_name,
            "s3": {
                "bucket": {"name": bucket},
                "object": {"key": key, "size": size, "eTag": etag},
            },
        }

    return _make


@pytest.fixture(scope="function")
def make_event_body(make_s3_record) -> Callable[..., str]:
    """Provide a builder for SQS message bodies carrying S3 event records."""

    def _make(*records: Dict, extra: Optional[List] = None) -> str:
        return json.dumps({"Records": list(records) + list(extra or [])})

    return _make
