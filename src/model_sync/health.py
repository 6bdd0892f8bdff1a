"""Liveness tracking for the sync loop.

The HTTP surface reads health, readiness and metrics from here; the sync
loop calls ``update_last_processed`` after every acknowledged message.
"""

import platform
import resource
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from model_sync import __version__
from model_sync.config import missing_env_vars
from model_sync.logging_config import create_logger

logger = create_logger(__name__)

DEFAULT_MAX_IDLE_SECONDS = 10 * 60


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


class HealthCheckService:
    """Tracks when the worker last processed a message.

    The worker turns unhealthy once nothing has been processed for
    ``max_idle_seconds``; processing a message makes it healthy again.
    Reading health can flip the stored flag.
    """

    def __init__(self, max_idle_seconds: float = DEFAULT_MAX_IDLE_SECONDS):
        self.max_idle_seconds = max_idle_seconds
        self.start_time = time.monotonic()
        self.last_processed_time: Optional[datetime] = None
        self.process_count = 0
        self.is_healthy = True
        self._lock = threading.Lock()

    def start(self) -> None:
        logger.info("🏥 Health check service initialized")

    def update_last_processed(self) -> None:
        """Record a successfully processed message."""
        with self._lock:
            self.last_processed_time = datetime.now(timezone.utc)
            self.process_count += 1
            self.is_healthy = True

    def set_healthy(self, healthy: bool) -> None:
        with self._lock:
            self.is_healthy = healthy

    def uptime(self) -> int:
        return int(time.monotonic() - self.start_time)

    def _idle_seconds(self, now: datetime) -> Optional[float]:
        if self.last_processed_time is None:
            return None
        return (now - self.last_processed_time).total_seconds()

    def get_health(self) -> Dict[str, Any]:
        """Return the health payload, marking the worker unhealthy when idle too long."""
        now = datetime.now(timezone.utc)
        with self._lock:
            idle = self._idle_seconds(now)
            if idle is not None and idle > self.max_idle_seconds:
                if self.is_healthy:
                    logger.warning(
                        f"No message processed for {idle:.0f}s, marking unhealthy"
                    )
                self.is_healthy = False

            return {
                "status": "healthy" if self.is_healthy else "unhealthy",
                "uptime": self.uptime(),
                "timestamp": _iso(now),
                "lastProcessed": _iso(self.last_processed_time),
                "timeSinceLastProcess": int(idle * 1000) if idle is not None else None,
            }

    def get_metrics(self) -> Dict[str, Any]:
        """Return a metrics snapshot for the /metrics endpoint."""
        usage = resource.getrusage(resource.RUSAGE_SELF)
        with self._lock:
            return {
                "timestamp": _iso(datetime.now(timezone.utc)),
                "uptime": self.uptime(),
                "lastProcessed": _iso(self.last_processed_time),
                "processCount": self.process_count,
                "healthStatus": "healthy" if self.is_healthy else "unhealthy",
                "maxRssKb": usage.ru_maxrss,
                "cpuUserSeconds": round(usage.ru_utime, 3),
                "cpuSystemSeconds": round(usage.ru_stime, 3),
                "version": __version__,
                "pythonVersion": platform.python_version(),
                "platform": platform.system().lower(),
                "arch": platform.machine(),
            }

    def is_ready(self) -> Dict[str, Any]:
        """Readiness: every required environment variable is set."""
        missing: List[str] = missing_env_vars()
        result: Dict[str, Any] = {"ready": not missing}
        if missing:
            result["missingEnvVars"] = missing
        return result
