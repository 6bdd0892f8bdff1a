"""Process entry point for the model sync worker.

Usage:
    python -m model_sync [serve]     # poll the update queue and serve the API
    python -m model_sync full-sync   # run one full reconciliation and exit
"""

import argparse
import signal
import sys
import threading
from typing import List, Optional

from dotenv import load_dotenv

from model_sync.api import ApiServer
from model_sync.config import load_settings, validate_config
from model_sync.error_handler import install_global_exception_handlers
from model_sync.exceptions import ConfigurationError
from model_sync.health import HealthCheckService
from model_sync.logging_config import create_logger, log_exception
from model_sync.sync_service import ModelSyncService

logger = create_logger(__name__)


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, frame):
        name = signal.Signals(signum).name
        logger.info(f"Received {name}, finishing the current cycle before shutdown...")
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)


def serve(service: ModelSyncService, health_service: HealthCheckService, port: int) -> None:
    """Run the sync loop on this thread with the API beside it until signalled."""
    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    api_server = ApiServer(service, health_service, port=port)
    api_server.start()
    try:
        service.run(stop_event)
    finally:
        api_server.stop()


def full_sync(service: ModelSyncService) -> bool:
    """Run one reconciliation pass and print its summary."""
    result = service.trigger_full_sync()
    print(f"\nFull sync: {result.synced_models}/{result.total_models} models synced")
    for error in result.errors:
        print(f"  - {error}")
    return result.success


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Mirror model files from S3 into a local directory"
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "full-sync"],
        help="serve: follow the update queue (default); full-sync: reconcile once and exit",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Load environment variables from this file (default: .env if present)"
    )
    args = parser.parse_args(argv)

    load_dotenv(args.env_file)
    install_global_exception_handlers()

    try:
        settings = load_settings()
        validate_config(settings)
    except ConfigurationError as e:
        logger.error(f"Failed to start Model Sync Service: {e}")
        sys.exit(1)

    logger.info(
        f"Configuration: region={settings.aws_region} bucket={settings.bucket_name} "
        f"models_path={settings.models_base_path}"
    )

    try:
        health_service = HealthCheckService(max_idle_seconds=settings.max_idle_seconds)
        service = ModelSyncService(settings, health_service=health_service)

        if args.command == "full-sync":
            sys.exit(0 if full_sync(service) else 1)

        logger.info("🚀 Starting Model Sync Worker...")
        serve(service, health_service, settings.port)
    except Exception as e:
        log_exception(logger, e, context=f"command={args.command}")
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
