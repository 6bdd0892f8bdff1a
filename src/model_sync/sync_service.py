"""Queue-driven synchronization of the local models directory.

``ModelSyncService`` long-polls the update queue for S3 change
notifications, downloads or deletes the affected model files and tells
application pods about every replaced file through the notification queue.
It also offers a full reconciliation pass over the whole bucket.

A message is deleted only after all of its events were handled. When
handling raises, the message is left alone and SQS redelivers it once the
visibility timeout expires, which is the only retry mechanism.
"""

import threading
import time
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from model_sync.config import SyncSettings
from model_sync.error_handler import PartialFailureCollector
from model_sync.events import (
    ChangeEvent,
    ChangeKind,
    FullSyncResult,
    ModelUpdateNotification,
    has_model_path,
    parse_message_body,
)
from model_sync.exceptions import (
    MalformedEventError,
    NotificationError,
    QueueOperationError,
    S3OperationError,
)
from model_sync.file_validator import cleanup_file, is_model_file
from model_sync.health import HealthCheckService
from model_sync.logging_config import create_logger
from model_sync.s3_service import S3Service
from model_sync.utils import create_aws_client, resolve_local_path

logger = create_logger(__name__)


class ModelSyncService:
    """Keeps the models directory in step with the S3 bucket.

    Attributes:
        settings: Worker settings
        s3_service: Bucket access
        health_service: Liveness tracker updated per processed message
        sqs_client: boto3 SQS client for both queues
    """

    def __init__(
        self,
        settings: SyncSettings,
        s3_service: Optional[S3Service] = None,
        health_service: Optional[HealthCheckService] = None,
        sqs_client: Optional[Any] = None,
    ):
        self.settings = settings
        self.s3_service = s3_service or S3Service(
            settings.bucket_name,
            region_name=settings.aws_region,
            endpoint_url=settings.endpoint_url,
        )
        self.health_service = health_service or HealthCheckService(
            max_idle_seconds=settings.max_idle_seconds
        )
        self.sqs_client = sqs_client or create_aws_client(
            "sqs", settings.aws_region, settings.endpoint_url
        )
        self.models_base_path = settings.models_base_path

    def run(self, stop_event: threading.Event) -> None:
        """Run the polling loop until stop_event is set.

        The event is checked once per cycle. A cycle in progress, including
        any download, always finishes before this returns.
        """
        logger.info("🚀 Model Sync Service starting...")
        self.health_service.start()

        while not stop_event.is_set():
            try:
                self.process_messages()
                pause = self.settings.poll_interval
            except Exception as e:
                logger.error(f"Error in main processing loop: {type(e).__name__}: {e}")
                pause = self.settings.error_backoff

            stop_event.wait(pause)

        logger.info("🛑 Model Sync Service stopped")

    def process_messages(self) -> int:
        """Receive one batch from the update queue and handle it in order.

        Returns:
            Number of messages handled and deleted

        Raises:
            QueueOperationError: If the receive call fails
        """
        try:
            response = self.sqs_client.receive_message(
                QueueUrl=self.settings.update_queue_url,
                MaxNumberOfMessages=self.settings.max_messages,
                WaitTimeSeconds=self.settings.wait_time_seconds,
                VisibilityTimeout=self.settings.visibility_timeout,
            )
        except (ClientError, BotoCoreError) as e:
            raise QueueOperationError(f"Error receiving messages from SQS: {e}") from e

        messages = response.get("Messages", [])
        if not messages:
            return 0

        logger.info(f"Received {len(messages)} messages from SQS")

        handled = 0
        for message in messages:
            message_id = message.get("MessageId")
            try:
                self.handle_message(message)
            except Exception as e:
                # Left on the queue; visible again after the visibility timeout
                logger.error(
                    f"Error processing message {message_id}, leaving it for redelivery: "
                    f"{type(e).__name__}: {e}"
                )
                continue

            self.delete_message(message)
            self.health_service.update_last_processed()
            handled += 1

        return handled

    def handle_message(self, message: Dict[str, Any]) -> None:
        """Handle every S3 event record in one SQS message.

        Malformed records are skipped with a warning. An invalid body is
        logged and the message treated as handled, since redelivering it
        cannot help.
        """
        message_id = message.get("MessageId")

        try:
            records, reason = parse_message_body(message.get("Body", ""))
        except MalformedEventError as e:
            logger.warning(f"Invalid message {message_id}, skipping: {e}")
            return

        if reason:
            logger.warning(f"Message {message_id} has no S3 event records ({reason}), skipping")
            return

        for index, record in enumerate(records):
            try:
                event = ChangeEvent.from_record(record)
            except MalformedEventError as e:
                logger.warning(
                    f"Skipping malformed record {index} in message {message_id}: {e}"
                )
                continue

            self.handle_s3_event(event)

    def handle_s3_event(self, event: ChangeEvent) -> None:
        """Route one change event to the update or deletion path."""
        key = event.key

        if not is_model_file(key, self.s3_service.extensions):
            logger.debug(f"Skipping non-model file: {key}")
            return

        if not has_model_path(key):
            logger.warning(f"Skipping event with unparseable model path: {key}")
            return

        logger.info(f"Processing S3 event: {event.event_name} for {key}")

        if event.kind in (ChangeKind.CREATED, ChangeKind.MODIFIED):
            self.handle_model_update(event)
        elif event.kind == ChangeKind.REMOVED:
            self.handle_model_deletion(event)
        else:
            logger.debug(f"Unsupported event type: {event.event_name}")

    def get_local_model_path(self, key: str) -> str:
        return resolve_local_path(self.models_base_path, key)

    def handle_model_update(self, event: ChangeEvent) -> bool:
        """Download a created or modified model if the local copy is stale.

        Returns:
            True if a new file was installed, False if already up to date

        Raises:
            S3OperationError: If the download failed
            NotificationError: If the downstream notification could not be sent
        """
        try:
            local_path = self.get_local_model_path(event.key)
        except MalformedEventError as e:
            logger.warning(f"Skipping update: {e}")
            return False

        logger.info(f"🔄 Processing model update: {event.key}")

        if not self.s3_service.should_update_file(event.key, local_path):
            logger.info(f"Model is already up to date: {event.key}")
            return False

        result = self.s3_service.download_file(event.key, local_path)
        if not result.success:
            raise S3OperationError(f"Model download failed for {event.key}: {result.error}")

        logger.info(f"✅ Model updated successfully: {event.key}")

        self.notify_applications(
            ModelUpdateNotification(
                path=event.key,
                local_path=local_path,
                size=result.size,
                download_duration=result.duration,
            )
        )
        return True

    def handle_model_deletion(self, event: ChangeEvent) -> None:
        """Remove the local copy of a deleted model; absence counts as success."""
        try:
            local_path = self.get_local_model_path(event.key)
        except MalformedEventError as e:
            logger.warning(f"Skipping deletion: {e}")
            return

        logger.info(f"🗑️ Processing model deletion: {event.key}")
        cleanup_file(local_path)
        logger.info(f"✅ Model deleted: {event.key}")

    def notify_applications(self, notification: ModelUpdateNotification) -> None:
        """Send an update notification to the application pods.

        Raises:
            NotificationError: If the send fails
        """
        try:
            self.sqs_client.send_message(
                QueueUrl=self.settings.notification_queue_url,
                MessageBody=notification.to_message_body(),
                MessageAttributes=notification.message_attributes(),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to notify applications about {notification.path}: {e}")
            raise NotificationError(
                f"Failed to send update notification for {notification.path}: {e}"
            ) from e

        logger.info(f"📢 Notification sent to applications: {notification.path}")

    def delete_message(self, message: Dict[str, Any]) -> None:
        """Delete a handled message; failures are logged only."""
        try:
            self.sqs_client.delete_message(
                QueueUrl=self.settings.update_queue_url,
                ReceiptHandle=message["ReceiptHandle"],
            )
        except (ClientError, BotoCoreError, KeyError) as e:
            logger.error(
                f"Failed to delete SQS message {message.get('MessageId')}: "
                f"{type(e).__name__}: {e}"
            )

    def trigger_full_sync(self) -> FullSyncResult:
        """Bring every model file in the bucket up to date.

        Each key is checked and downloaded independently; one key's failure
        is recorded and the pass continues.

        Returns:
            FullSyncResult summarising the pass
        """
        start_time = time.monotonic()
        logger.info("🔄 Starting full sync...")

        try:
            all_models = self.s3_service.list_all_models()
        except Exception as e:
            duration = time.monotonic() - start_time
            logger.error(f"❌ Full sync failed while listing models: {e}")
            return FullSyncResult(
                total_models=0, synced_models=0, errors=[str(e)], duration=duration
            )

        if not all_models:
            logger.info("ℹ️ No models found in S3 bucket")
            return FullSyncResult(
                total_models=0,
                synced_models=0,
                errors=[],
                duration=time.monotonic() - start_time,
            )

        logger.info(f"Found {len(all_models)} models in S3, starting sync...")

        collector = PartialFailureCollector()
        synced_models = 0

        for key in all_models:
            try:
                local_path = self.get_local_model_path(key)

                if not self.s3_service.should_update_file(key, local_path):
                    logger.debug(f"Model already up to date: {key}")
                    collector.add_success(key)
                    continue

                logger.info(f"🔄 Syncing model: {key}")
                result = self.s3_service.download_file(key, local_path)
                if not result.success:
                    raise S3OperationError(f"Failed to download {key}: {result.error}")

                synced_models += 1
                collector.add_success(key)
                logger.info(f"✅ Successfully synced: {key}")

            except Exception as e:
                collector.add_failure(key, e)

        collector.log_summary()

        result = FullSyncResult(
            total_models=len(all_models),
            synced_models=synced_models,
            errors=collector.error_messages(),
            duration=time.monotonic() - start_time,
        )
        logger.info(
            f"🏁 Full sync completed: {result.synced_models}/{result.total_models} synced, "
            f"{len(result.errors)} errors, {result.duration:.2f}s"
        )
        return result
