import enum
import logging
import threading
import time
from dataclasses import dataclass, asdict
from typing import Callable, List

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


def now_millis() -> int:
    return int(time.time() * 1000)


# --- Data Structures ---
@dataclass(frozen=True)
class PlayedItem:
    filename: str
    display_name: str
    color: str
    played_at: int  # epoch millis

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "displayName": self.display_name,
            "color": self.color,
            "playedAt": self.played_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlayedItem":
        return cls(
            filename=str(data["filename"]),
            display_name=str(data["displayName"]),
            color=str(data["color"]),
            played_at=int(data["playedAt"]),
        )


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    used: int
    limit: int
    retry_after_seconds: int


@dataclass(frozen=True)
class ClientQuota:
    ip: str
    used: int
    limit: int

    def to_dict(self) -> dict:
        return asdict(self)


class PlaybackState(enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    PLAYING = "playing"
    ERROR = "error"


class ChangeNotifier:
    """Thread-safe listener list.

    Listeners are snapshotted under the lock and invoked after it is
    released, so a listener may subscribe, unsubscribe or read the owner
    without deadlocking.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception(f"Change listener {listener!r} failed")
