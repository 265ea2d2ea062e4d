"""
Request Metrics

Best-effort counters shared by concurrent requests. In-process increments go
through a lock; with Redis configured, increments are queued and written with
HINCRBY by a background writer thread, so a slow or unreachable Redis never
holds up a request. Recording failures are logged and never fail the request.
"""

import queue
import threading
import time
from typing import Dict, Optional, Tuple

import redis

from core.logger import get_logger

logger = get_logger(__name__)

METRICS_KEY = "edge:metrics"

# Pending Redis increments; beyond this, increments are dropped
MAX_PENDING_INCREMENTS = 10000


class MetricsRecorder:
    """Named counters with an optional Redis backend."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        key: str = METRICS_KEY,
        redis_client: Optional[redis.Redis] = None
    ):
        self.key = key
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._redis: Optional[redis.Redis] = redis_client
        self._pending: "queue.Queue[Tuple[str, int]]" = queue.Queue(maxsize=MAX_PENDING_INCREMENTS)
        self._writer: Optional[threading.Thread] = None

        if self._redis is None and redis_url:
            try:
                client = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_connect_timeout=2,
                    socket_timeout=2
                )
                client.ping()
                self._redis = client
                logger.info("Metrics using Redis for counter storage")
            except Exception as e:
                logger.warning(f"Metrics using in-memory counters (Redis not available): {str(e)}")

        if self._redis is not None:
            self._writer = threading.Thread(target=self._write_pending, name="metrics-writer", daemon=True)
            self._writer.start()

    @property
    def uses_redis(self) -> bool:
        return self._redis is not None

    def increment(self, name: str, amount: int = 1) -> None:
        """
        Increment a counter.

        Never blocks on Redis: the increment is queued for the writer thread.

        Args:
            name: Counter name
            amount: Increment (default 1)
        """
        try:
            if self._redis is not None:
                self._pending.put_nowait((name, amount))
                return
            with self._lock:
                self._counters[name] = self._counters.get(name, 0) + amount
        except queue.Full:
            logger.warning(f"Dropped metric {name}: too many pending Redis increments")
        except Exception as e:
            logger.error(f"Failed to record metric {name}: {str(e)}")

    def _write_pending(self) -> None:
        while True:
            name, amount = self._pending.get()
            try:
                self._redis.hincrby(self.key, name, amount)
            except Exception as e:
                logger.error(f"Failed to write metric {name} to Redis: {str(e)}")
            finally:
                self._pending.task_done()

    def flush(self, timeout: float = 5.0) -> bool:
        """
        Wait until queued Redis increments are written.

        Returns:
            bool: True if the queue drained within the timeout
        """
        deadline = time.monotonic() + timeout
        while self._pending.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def snapshot(self) -> Dict[str, int]:
        """Return a copy of all counters (blocking call with Redis)."""
        if self._redis is not None:
            try:
                return {name: int(value) for name, value in self._redis.hgetall(self.key).items()}
            except Exception as e:
                logger.error(f"Failed to read metrics from Redis: {str(e)}")
                return {}
        with self._lock:
            return dict(self._counters)

    def get(self, name: str) -> int:
        return self.snapshot().get(name, 0)

    def reset(self) -> None:
        if self._redis is not None:
            self.flush()
            try:
                self._redis.delete(self.key)
            except Exception as e:
                logger.error(f"Failed to reset metrics in Redis: {str(e)}")
            return
        with self._lock:
            self._counters.clear()
