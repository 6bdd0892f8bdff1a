"""
Error handling utilities for the model sync worker.

This module provides:
- Error categorization (transient vs permanent)
- Retry logic with exponential backoff for idempotent S3 calls
- Partial failure collection and reporting for batch syncs
- Global exception handling for the process and its threads
"""

import functools
import os
import random
import sys
import threading
import time
import traceback
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple, Type

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from model_sync.exceptions import (
    IntegrityError,
    MalformedEventError,
    ObjectNotFoundError,
    QueueOperationError,
)
from model_sync.logging_config import create_logger

logger = create_logger(__name__)


class ErrorCategory(str, Enum):
    """Categories of errors for handling strategy."""
    TRANSIENT = "transient"  # Temporary errors that may succeed on retry
    PERMANENT = "permanent"  # Errors that will not resolve with retry
    UNKNOWN = "unknown"  # Uncategorized errors


TRANSIENT_AWS_CODES = {
    "RequestTimeout",
    "ThrottlingException",
    "TooManyRequestsException",
    "ServiceUnavailable",
    "InternalError",
    "SlowDown",
    "RequestLimitExceeded",
}

PERMANENT_AWS_CODES = {
    "404",
    "NotFound",
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "NoSuchBucket",
    "NoSuchKey",
    "InvalidParameter",
    "AWS.SimpleQueueService.NonExistentQueue",
}


def categorize_error(exception: BaseException) -> ErrorCategory:
    """Categorize an error as transient or permanent.

    Args:
        exception: The exception to categorize

    Returns:
        ErrorCategory indicating if error is transient or permanent
    """
    if isinstance(exception, (ObjectNotFoundError, IntegrityError, MalformedEventError)):
        return ErrorCategory.PERMANENT

    # Missing files and permissions will not fix themselves
    if isinstance(exception, (FileNotFoundError, PermissionError)):
        return ErrorCategory.PERMANENT

    if isinstance(exception, QueueOperationError):
        return ErrorCategory.TRANSIENT

    if isinstance(
        exception,
        (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError),
    ):
        return ErrorCategory.TRANSIENT

    if isinstance(exception, (ConnectionError, TimeoutError, OSError)):
        return ErrorCategory.TRANSIENT

    if isinstance(exception, ClientError):
        error_code = exception.response.get("Error", {}).get("Code", "")

        if error_code in TRANSIENT_AWS_CODES:
            return ErrorCategory.TRANSIENT

        if error_code in PERMANENT_AWS_CODES:
            return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def retryable_operation(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
) -> Callable:
    """Decorator for retrying operations with exponential backoff.

    Permanent errors (see ``categorize_error``) are raised immediately.

    Args:
        max_attempts: Maximum number of attempts
        initial_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Whether to add random jitter to delays
        retry_on: Tuple of exception types to retry on (None = all)

    Returns:
        Decorated function with retry logic

    Example:
        @retryable_operation(max_attempts=5, initial_delay=2.0)
        def head(client, bucket, key):
            return client.head_object(Bucket=bucket, Key=key)
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0

            while True:
                attempt += 1

                try:
                    return func(*args, **kwargs)

                except Exception as e:
                    if retry_on and not isinstance(e, retry_on):
                        raise

                    error_category = categorize_error(e)

                    if error_category == ErrorCategory.PERMANENT:
                        raise

                    if attempt >= max_attempts:
                        logger.error(
                            f"All {max_attempts} attempts failed for "
                            f"{func.__name__}: {e}"
                        )
                        raise

                    current_delay = min(
                        initial_delay * (exponential_base ** (attempt - 1)),
                        max_delay
                    )

                    if jitter:
                        current_delay *= (0.5 + random.random() * 0.5)

                    logger.warning(
                        f"Attempt {attempt}/{max_attempts} failed for "
                        f"{func.__name__}: {e}. "
                        f"Retrying in {current_delay:.2f}s... "
                        f"(Error category: {error_category.value})"
                    )

                    time.sleep(current_delay)

        return wrapper

    return decorator


class PartialFailureCollector:
    """Collects errors during batch processing for partial failure handling.

    This class allows a batch to keep processing items when some fail,
    collecting all errors for reporting at the end.

    Example:
        collector = PartialFailureCollector()
        for key in keys:
            try:
                sync(key)
                collector.add_success(key)
            except Exception as e:
                collector.add_failure(key, e)

        collector.log_summary()
    """

    def __init__(self):
        self.failures: List[Tuple[Any, Exception]] = []
        self.successes: List[Any] = []

    def add_failure(self, item: Any, exception: Exception) -> None:
        """Record a failed item.

        Args:
            item: The item that failed
            exception: The exception that occurred
        """
        self.failures.append((item, exception))
        logger.warning(f"Item failed: {item} - {str(exception)[:200]}")

    def add_success(self, item: Any) -> None:
        """Record a successful item."""
        self.successes.append(item)

    def has_failures(self) -> bool:
        return len(self.failures) > 0

    def get_failure_count(self) -> int:
        return len(self.failures)

    def get_success_count(self) -> int:
        return len(self.successes)

    def get_total_count(self) -> int:
        return len(self.failures) + len(self.successes)

    def error_messages(self) -> List[str]:
        """Return one message per failed item, in failure order."""
        return [f"Error syncing {item}: {exc}" for item, exc in self.failures]

    def log_summary(self) -> None:
        """Log a summary of successes and failures."""
        total = self.get_total_count()
        if total == 0:
            logger.info("No items processed")
            return

        success_rate = (self.get_success_count() / total) * 100
        logger.info(
            f"Batch processing summary: {self.get_success_count()}/{total} "
            f"succeeded ({success_rate:.1f}%)"
        )

        if self.has_failures():
            logger.warning(f"Failed items: {self.get_failure_count()}/{total}")
            for item, exc in self.failures[:5]:
                logger.warning(f"  - {item}: {str(exc)[:100]}")


def global_exception_handler(exc_type, exc_value, exc_traceback):
    """
    Global exception handler to log unhandled exceptions.

    :param exc_type: Exception type
    :param exc_value: Exception value
    :param exc_traceback: Exception traceback
    """
    logger.critical(" UNHANDLED EXCEPTION ")
    logger.critical(
        "An unexpected error occurred that was not caught by local exception handlers."
    )

    traceback_details = traceback.extract_tb(exc_traceback)
    if traceback_details:
        last_frame = traceback_details[-1]
        logger.critical(f"Error Location: {last_frame.filename}:{last_frame.lineno}")
        logger.critical(f"Function: {last_frame.name}")

    logger.critical(f"Error Type: {exc_type.__name__}")
    logger.critical(f"Error Message: {exc_value}")

    error_category = (
        categorize_error(exc_value)
        if isinstance(exc_value, Exception)
        else ErrorCategory.UNKNOWN
    )
    logger.critical(f"Error Category: {error_category.value}")

    # Ensure the error is still reported after logging
    sys.__excepthook__(exc_type, exc_value, exc_traceback)


def _thread_exception_handler(args) -> None:
    if issubclass(args.exc_type, SystemExit):
        return
    thread_name = args.thread.name if args.thread else "unknown"
    logger.critical(f"Unhandled exception in thread {thread_name}, terminating")
    global_exception_handler(args.exc_type, args.exc_value, args.exc_traceback)
    # Local state is rebuilt from disk and S3 on restart
    os._exit(1)


def install_global_exception_handlers() -> None:
    """Route unhandled exceptions from the process and its threads to the logger."""
    sys.excepthook = global_exception_handler
    threading.excepthook = _thread_exception_handler
