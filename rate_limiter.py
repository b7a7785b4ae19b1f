import logging
import math
import threading
from typing import Callable, Dict, List, Optional

from config import Settings
from data_models import ChangeNotifier, ClientQuota, Listener, RateLimitResult, now_millis

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 5
DEFAULT_WINDOW_MS = 10 * 60 * 1000


class RateLimiter:
    """Sliding-window request quota per client address.

    A client may make ``max_requests`` admitted requests within any trailing
    ``window_ms``. A timestamp counts while ``now - window_ms < ts``; expired
    timestamps are dropped lazily on every check and on every snapshot.
    Rejected attempts are never recorded.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_ms: int = DEFAULT_WINDOW_MS,
        enabled: bool = True,
        clock: Callable[[], int] = now_millis,
    ):
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._request_log: Dict[str, List[int]] = {}
        self._listeners = ChangeNotifier()

    @classmethod
    def from_settings(cls, settings: Settings, clock: Optional[Callable[[], int]] = None) -> "RateLimiter":
        return cls(
            max_requests=settings.rate_limit_max_requests,
            window_ms=settings.rate_limit_window_ms,
            enabled=settings.rate_limit_enabled,
            clock=clock or now_millis,
        )

    @property
    def window_minutes(self) -> int:
        return self.window_ms // 60000

    def is_enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def set_enabled(self, value: bool) -> None:
        with self._lock:
            self._enabled = value
        logger.info(f"Rate limiting {'enabled' if value else 'disabled'}")

    def _evict_expired(self, timestamps: List[int], now: int) -> None:
        cutoff = now - self.window_ms
        timestamps[:] = [ts for ts in timestamps if ts > cutoff]

    def check_and_record(self, client_id: str) -> RateLimitResult:
        """Admit or reject one request from ``client_id``.

        Admission and the bookkeeping behind it happen in one critical
        section, so concurrent requests from one client cannot both slip in
        under the limit.
        """
        with self._lock:
            if not self._enabled:
                return RateLimitResult(
                    allowed=True, used=0, limit=self.max_requests, retry_after_seconds=0
                )

            now = self._clock()
            timestamps = self._request_log.setdefault(client_id, [])
            self._evict_expired(timestamps, now)

            if len(timestamps) >= self.max_requests:
                oldest = min(timestamps)
                remaining_ms = oldest + self.window_ms - now
                retry_after = max(1, math.ceil(remaining_ms / 1000))
                result = RateLimitResult(
                    allowed=False,
                    used=len(timestamps),
                    limit=self.max_requests,
                    retry_after_seconds=retry_after,
                )
            else:
                timestamps.append(now)
                result = RateLimitResult(
                    allowed=True,
                    used=len(timestamps),
                    limit=self.max_requests,
                    retry_after_seconds=0,
                )

        if result.allowed:
            self._listeners.notify()
        else:
            logger.warning(
                f"Rate limit exceeded for {client_id} ({result.used}/{result.limit}), "
                f"retry in {result.retry_after_seconds}s"
            )
        return result

    def snapshot(self) -> List[ClientQuota]:
        """Quota of every client with live timestamps; forgets idle clients."""
        with self._lock:
            now = self._clock()
            quotas = []
            for client_id in list(self._request_log):
                timestamps = self._request_log[client_id]
                self._evict_expired(timestamps, now)
                if not timestamps:
                    del self._request_log[client_id]
                else:
                    quotas.append(
                        ClientQuota(ip=client_id, used=len(timestamps), limit=self.max_requests)
                    )
            return quotas

    def to_dict(self) -> dict:
        return {
            "quotas": [quota.to_dict() for quota in self.snapshot()],
            "maxRequests": self.max_requests,
            "windowMinutes": self.window_minutes,
        }

    def add_change_listener(self, listener: Listener) -> None:
        self._listeners.subscribe(listener)

    def remove_change_listener(self, listener: Listener) -> None:
        self._listeners.unsubscribe(listener)
