import os
from typing import Any, Optional

import boto3
from botocore.config import Config

from model_sync.exceptions import MalformedEventError
from model_sync.logging_config import create_logger

logger = create_logger(__name__)


def log_aws_initialization_error(service_name: str, error: Exception) -> None:
    """
    Comprehensive logging for AWS client initialization errors.

    :param service_name: AWS service the client was created for
    :param error: The exception raised during initialization
    """
    logger.critical(f"AWS {service_name.upper()} Initialization Failed: {error}")
    logger.critical("Troubleshooting:")
    logger.critical("1. Verify AWS credentials or the pod's IAM role")
    logger.critical("2. Check AWS_REGION and AWS_ENDPOINT_URL")
    logger.critical(f"3. Ensure the IAM principal has {service_name.upper()} access")


def create_aws_client(
    service_name: str,
    region_name: str,
    endpoint_url: Optional[str] = None,
) -> Any:
    """
    Create a boto3 client using the default credential chain.

    :param service_name: AWS service name, e.g. "s3" or "sqs"
    :param region_name: AWS region
    :param endpoint_url: Optional endpoint for S3/SQS-compatible services
    :return: boto3 client
    """
    kwargs = {
        "region_name": region_name,
        "config": Config(retries={"max_attempts": 3, "mode": "standard"}),
    }
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url

    try:
        return boto3.client(service_name, **kwargs)
    except Exception as e:
        log_aws_initialization_error(service_name, e)
        raise


def resolve_local_path(base_path: str, key: str) -> str:
    """Map an object key onto the local mirror, keeping its directory structure.

    Args:
        base_path: Root of the local mirror
        key: Decoded S3 object key

    Returns:
        Absolute local path for the key

    Raises:
        MalformedEventError: If the key would land outside base_path
    """
    base = os.path.abspath(base_path)
    local_path = os.path.abspath(os.path.join(base, key.lstrip("/")))
    if os.path.commonpath([base, local_path]) != base or local_path == base:
        raise MalformedEventError(f"Object key escapes the models directory: {key}")
    return local_path
