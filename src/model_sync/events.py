"""Event and result types exchanged by the sync pipeline.

Covers the inbound S3 change notifications read from the update queue,
remote object metadata, download outcomes, the outbound update
notification and the full-sync summary.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote_plus

from model_sync.exceptions import MalformedEventError


class ChangeKind(str, Enum):
    """Kinds of remote object mutation."""
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    OTHER = "other"

    @classmethod
    def from_event_name(cls, event_name: str) -> "ChangeKind":
        # Event names arrive with or without the "s3:" prefix
        if "ObjectCreated" in event_name:
            return cls.CREATED
        if "ObjectModified" in event_name:
            return cls.MODIFIED
        if "ObjectRemoved" in event_name:
            return cls.REMOVED
        return cls.OTHER


@dataclass(frozen=True)
class ChangeEvent:
    """A single remote object mutation taken from an S3 event record.

    Attributes:
        kind: Classified mutation kind
        event_name: Raw S3 event name
        bucket: Bucket the object lives in
        key: URL-decoded object key
        size: Object size reported by the event (0 for removals)
        etag: Entity tag reported by the event
        event_time: Source timestamp of the event
    """

    kind: ChangeKind
    event_name: str
    bucket: str
    key: str
    size: int = 0
    etag: str = ""
    event_time: str = ""

    @property
    def category(self) -> str:
        return self.key.split("/")[0]

    @property
    def model_type(self) -> str:
        return self.key.split("/")[1]

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ChangeEvent":
        """Build an event from one entry of an S3 notification's Records list.

        Raises:
            MalformedEventError: If the record lacks an event name or object key
        """
        if not isinstance(record, dict):
            raise MalformedEventError(f"Event record is not an object: {record!r}")

        event_name = record.get("eventName")
        s3_info = record.get("s3")
        if not isinstance(event_name, str) or not isinstance(s3_info, dict):
            raise MalformedEventError("Event record is missing eventName or s3 section")

        s3_object = s3_info.get("object")
        if not isinstance(s3_object, dict) or not isinstance(s3_object.get("key"), str):
            raise MalformedEventError("Event record is missing s3.object.key")

        bucket = s3_info.get("bucket") or {}
        try:
            size = int(s3_object.get("size") or 0)
        except (TypeError, ValueError):
            raise MalformedEventError(f"Invalid object size: {s3_object.get('size')!r}")

        return cls(
            kind=ChangeKind.from_event_name(event_name),
            event_name=event_name,
            bucket=bucket.get("name", "") if isinstance(bucket, dict) else "",
            key=unquote_plus(s3_object["key"]),
            size=size,
            etag=str(s3_object.get("eTag") or ""),
            event_time=str(record.get("eventTime") or ""),
        )


def has_model_path(key: str) -> bool:
    """True if the key has at least a category and a model type segment."""
    parts = key.split("/")
    return len(parts) >= 2 and all(parts[:2])


def parse_message_body(body: str) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Extract the S3 event records from an SQS message body.

    SNS-wrapped notifications are unwrapped first.

    Args:
        body: Raw SQS message body

    Returns:
        Tuple of (records, reason). ``reason`` is None when the body is an
        S3 event envelope, otherwise it says why the body carries no records.

    Raises:
        MalformedEventError: If the body is not valid JSON
    """
    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"Message body is not valid JSON: {e}")

    if (
        isinstance(payload, dict)
        and payload.get("Type") == "Notification"
        and isinstance(payload.get("Message"), str)
    ):
        try:
            payload = json.loads(payload["Message"])
        except ValueError as e:
            raise MalformedEventError(f"SNS message is not valid JSON: {e}")

    if not isinstance(payload, dict):
        return [], "body is not a JSON object"

    if payload.get("Event") == "s3:TestEvent":
        return [], "S3 test event"

    records = payload.get("Records")
    if not isinstance(records, list):
        return [], "no Records list"

    return records, None


@dataclass(frozen=True)
class ObjectInfo:
    """Remote object metadata, always fetched fresh."""

    size: int
    last_modified: datetime
    etag: str
    sha256: Optional[str] = None


@dataclass
class DownloadResult:
    """Outcome of one download attempt.

    ``size`` is the number of bytes transferred, even on failure, and
    ``duration`` the elapsed wall time in seconds.
    """

    success: bool
    size: int
    duration: float
    error: Optional[str] = None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ModelUpdateNotification:
    """Outbound message telling consumers a local model file was replaced."""

    path: str
    local_path: str
    size: int
    download_duration: float
    timestamp: str = field(default_factory=_utc_now_iso)
    type: str = "model_updated"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "path": self.path,
            "localPath": self.local_path,
            "size": self.size,
            "timestamp": self.timestamp,
            "downloadDuration": int(round(self.download_duration * 1000)),
        }

    def to_message_body(self) -> str:
        return json.dumps(self.to_dict())

    def message_attributes(self) -> Dict[str, Dict[str, str]]:
        """SQS message attributes consumers filter on."""
        parts = self.path.split("/")
        category = parts[0] if parts[0] else "unknown"
        model_type = parts[1] if len(parts) > 1 and parts[1] else "unknown"
        return {
            "ModelType": {"DataType": "String", "StringValue": model_type},
            "Category": {"DataType": "String", "StringValue": category},
        }


@dataclass
class FullSyncResult:
    """Summary of a full reconciliation pass."""

    total_models: int
    synced_models: int
    errors: List[str]
    duration: float

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "totalModels": self.total_models,
            "syncedModels": self.synced_models,
            "errors": list(self.errors),
            "duration": int(round(self.duration * 1000)),
        }
