"""
Custom exceptions for the model sync worker.

This module defines a hierarchy of exceptions to provide more
precise error handling and debugging across the sync pipeline.
"""


class ModelSyncError(Exception):
    """
    Base exception for all model sync errors.

    All custom exceptions in the worker inherit from this class, so the
    sync loop can tell its own failures apart from programming errors.
    """

    pass


class ConfigurationError(ModelSyncError):
    """
    Raised when there are configuration-related issues.

    This exception is used when:
    - Required environment variables are missing
    - Configuration values are invalid
    - The models base path cannot be created
    """

    pass


class S3OperationError(ModelSyncError):
    """
    Raised for S3-specific operation errors.

    Covers issues such as:
    - Failed metadata lookups
    - Interrupted downloads
    - Bucket listing failures
    """

    pass


class ObjectNotFoundError(S3OperationError):
    """Raised when a remote object does not exist in the bucket."""

    pass


class IntegrityError(S3OperationError):
    """
    Raised when a downloaded file does not match the remote object.

    The staging file is removed before this is raised.
    """

    pass


class InsufficientSpaceError(S3OperationError):
    """Raised when the target filesystem cannot hold the object."""

    pass


class QueueOperationError(ModelSyncError):
    """
    Raised for SQS receive, send or delete failures.

    These are treated as transient: the sync loop logs them, backs off
    and tries again on the next cycle.
    """

    pass


class NotificationError(QueueOperationError):
    """Raised when the downstream update notification could not be sent."""

    pass


class MalformedEventError(ModelSyncError):
    """
    Raised for change events that cannot be interpreted.

    Covers records such as:
    - Missing event name or object key
    - Keys with fewer than two path segments
    - Keys resolving outside the models base path
    """

    pass
