"""Configuration module for worker settings and environment variables.

This module manages configuration settings for the model sync worker.
Everything is read from the environment; a ``.env`` file is loaded by the
entry point before ``load_settings`` is called.
"""

import os
from dataclasses import dataclass
from typing import List, Optional

from model_sync.exceptions import ConfigurationError
from model_sync.logging_config import create_logger

logger = create_logger(__name__)

DEFAULT_AWS_REGION = "us-west-2"
DEFAULT_MODELS_BASE_PATH = "/models"
DEFAULT_PORT = 8080

# Required for the worker to be considered ready
REQUIRED_ENV_VARS = [
    "AWS_REGION",
    "S3_BUCKET_NAME",
    "SQS_UPDATE_QUEUE_URL",
    "SQS_NOTIFICATION_QUEUE_URL",
]


@dataclass(frozen=True)
class SyncSettings:
    """Resolved worker settings.

    Attributes:
        bucket_name: Remote bucket mirrored locally
        update_queue_url: Queue carrying S3 change notifications
        notification_queue_url: Queue receiving model update notifications
        models_base_path: Root of the local mirror
        aws_region: Region for the S3 and SQS clients
        endpoint_url: Optional S3/SQS-compatible endpoint
        max_messages: Messages per receive call
        wait_time_seconds: Long-poll wait per receive call
        visibility_timeout: Seconds a received message stays hidden
        poll_interval: Pause between processing cycles
        error_backoff: Pause after a failed processing cycle
        max_idle_seconds: Idle time after which the worker reports unhealthy
        port: HTTP surface port
    """

    bucket_name: str
    update_queue_url: str
    notification_queue_url: str
    models_base_path: str = DEFAULT_MODELS_BASE_PATH
    aws_region: str = DEFAULT_AWS_REGION
    endpoint_url: Optional[str] = None
    max_messages: int = 10
    wait_time_seconds: int = 20
    visibility_timeout: int = 300
    poll_interval: float = 5.0
    error_backoff: float = 10.0
    max_idle_seconds: float = 600.0
    port: int = DEFAULT_PORT


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def load_settings() -> SyncSettings:
    """
    Build settings from the current environment.

    :return: SyncSettings populated from environment variables
    :raises ConfigurationError: If a numeric variable cannot be parsed
    """
    return SyncSettings(
        bucket_name=os.getenv("S3_BUCKET_NAME", ""),
        update_queue_url=os.getenv("SQS_UPDATE_QUEUE_URL", ""),
        notification_queue_url=os.getenv("SQS_NOTIFICATION_QUEUE_URL", ""),
        models_base_path=os.getenv("MODELS_BASE_PATH", DEFAULT_MODELS_BASE_PATH),
        aws_region=os.getenv("AWS_REGION", DEFAULT_AWS_REGION),
        endpoint_url=os.getenv("AWS_ENDPOINT_URL") or None,
        max_messages=_int_env("SQS_MAX_MESSAGES", 10),
        wait_time_seconds=_int_env("SQS_WAIT_TIME_SECONDS", 20),
        visibility_timeout=_int_env("SQS_VISIBILITY_TIMEOUT", 300),
        poll_interval=_float_env("POLL_INTERVAL_SECONDS", 5.0),
        error_backoff=_float_env("ERROR_BACKOFF_SECONDS", 10.0),
        max_idle_seconds=_float_env("MAX_IDLE_SECONDS", 600.0),
        port=_int_env("PORT", DEFAULT_PORT),
    )


def missing_env_vars() -> List[str]:
    """Return the required environment variables that are not set."""
    return [name for name in REQUIRED_ENV_VARS if not os.getenv(name)]


def validate_config(settings: SyncSettings) -> None:
    """
    Validate critical configuration parameters.
    Raises ConfigurationError if any required config is missing or invalid.

    :param settings: Settings to validate
    :raises ConfigurationError: If configuration is invalid
    """
    required = [
        ("S3_BUCKET_NAME", settings.bucket_name),
        ("SQS_UPDATE_QUEUE_URL", settings.update_queue_url),
        ("SQS_NOTIFICATION_QUEUE_URL", settings.notification_queue_url),
        ("MODELS_BASE_PATH", settings.models_base_path),
    ]
    for name, value in required:
        if not value:
            raise ConfigurationError(f"Missing required configuration: {name}")

    # SQS rejects values outside these ranges
    if not 1 <= settings.max_messages <= 10:
        raise ConfigurationError("SQS_MAX_MESSAGES must be between 1 and 10")
    if not 0 <= settings.wait_time_seconds <= 20:
        raise ConfigurationError("SQS_WAIT_TIME_SECONDS must be between 0 and 20")
    if not 0 <= settings.visibility_timeout <= 43200:
        raise ConfigurationError("SQS_VISIBILITY_TIMEOUT must be between 0 and 43200")

    if settings.poll_interval < 0 or settings.error_backoff < 0:
        raise ConfigurationError("Poll interval and error backoff must not be negative")

    try:
        os.makedirs(settings.models_base_path, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(
            f"Unable to create models directory at {settings.models_base_path}: {e}"
        )

    logger.info("Configuration validation successful")
