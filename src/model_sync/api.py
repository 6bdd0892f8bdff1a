"""HTTP surface for probes, metrics and manual full syncs."""

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Tuple

from model_sync.health import HealthCheckService
from model_sync.logging_config import create_logger
from model_sync.sync_service import ModelSyncService

logger = create_logger(__name__)

Response = Tuple[int, Dict[str, Any]]


class ApiHandler(BaseHTTPRequestHandler):
    """Routes requests to the health tracker and the sync service."""

    server: "_ApiHTTPServer"

    def do_GET(self):
        health = self.server.health_service
        path = self.path.split("?", 1)[0]

        if path == "/health":
            payload = health.get_health()
            self._send(200 if payload["status"] == "healthy" else 503, payload)
        elif path == "/ready":
            payload = health.is_ready()
            if payload["ready"]:
                payload["ready"] = health.get_health()["status"] == "healthy"
            self._send(200 if payload["ready"] else 503, payload)
        elif path == "/live":
            self._send(200, {"alive": True})
        elif path == "/metrics":
            self._send(200, health.get_metrics())
        elif path == "/sync/status":
            current = health.get_health()
            self._send(200, {
                "service": {
                    "status": current["status"],
                    "uptime": current["uptime"],
                    "lastProcessed": current["lastProcessed"],
                },
                "metrics": health.get_metrics(),
            })
        else:
            self._not_found()

    def do_POST(self):
        path = self.path.split("?", 1)[0]
        if path == "/sync/full":
            self._send(*self._full_sync())
        else:
            self._not_found()

    def _full_sync(self) -> Response:
        logger.info("🔄 Manual full sync triggered via API")
        try:
            result = self.server.sync_service.trigger_full_sync()
        except Exception as e:
            logger.error(f"API error during full sync: {e}")
            return 500, {
                "success": False,
                "message": "Internal server error during full sync",
                "error": str(e),
            }

        if result.success:
            return 200, {
                "success": True,
                "message": "Full sync completed successfully",
                "data": result.to_dict(),
            }
        return 207, {
            "success": False,
            "message": "Full sync completed with errors",
            "data": result.to_dict(),
        }

    def _not_found(self) -> None:
        self._send(404, {
            "error": "Not Found",
            "message": f"Route {self.command} {self.path} not found",
        })

    def _send(self, status_code: int, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload).encode()
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} {format % args}")


class _ApiHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, sync_service: ModelSyncService, health_service: HealthCheckService):
        self.sync_service = sync_service
        self.health_service = health_service
        super().__init__(address, ApiHandler)


class ApiServer:
    """Serves the API from a daemon thread so the sync loop keeps the main thread."""

    def __init__(
        self,
        sync_service: ModelSyncService,
        health_service: HealthCheckService,
        port: int = 8080,
        host: str = "0.0.0.0",
    ):
        self.host = host
        self.port = port
        self.sync_service = sync_service
        self.health_service = health_service
        self._server: Optional[_ApiHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def server_port(self) -> Optional[int]:
        return self._server.server_address[1] if self._server else None

    def start(self) -> None:
        try:
            self._server = _ApiHTTPServer(
                (self.host, self.port), self.sync_service, self.health_service
            )
        except OSError as e:
            logger.error(f"Unable to bind API server to port {self.port}: {e}")
            raise

        self._thread = threading.Thread(
            target=self._server.serve_forever, name="api-server", daemon=True
        )
        self._thread.start()
        logger.info(f"🚀 API Server started on port {self.server_port}")
        logger.info(f"Health check: http://localhost:{self.server_port}/health")
        logger.info(f"Manual sync: POST http://localhost:{self.server_port}/sync/full")

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        logger.info("🛑 API Server stopped")
