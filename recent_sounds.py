import json
import logging
import os
import tempfile
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from config import Settings
from data_models import ChangeNotifier, Listener, PlayedItem, now_millis

logger = logging.getLogger(__name__)

MAX_SOUNDS = 1000

COLORS = [
    "#FF6B6B", "#4ECDC4", "#45B7D1", "#96CEB4", "#FFEAA7",
    "#DDA0DD", "#98D8C8", "#F7DC6F", "#BB8FCE", "#85C1E9",
    "#F8B500", "#FF8C00", "#00CED1", "#FF69B4", "#32CD32",
    "#FFD700", "#FF4500", "#1E90FF", "#FF1493", "#00FA9A",
]


def java_string_hash(value: str) -> int:
    """32-bit signed ``String.hashCode`` over UTF-16 code units.

    Matches the colours of recent-sound lists written by the Android app.
    """
    data = value.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (31 * h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def color_for_sound(filename: str) -> str:
    return COLORS[abs(java_string_hash(filename)) % len(COLORS)]


def display_name_for(filename: str) -> str:
    """Filename without its last extension ("a.b.mp3" -> "a.b")."""
    return filename.rsplit(".", 1)[0]


class JsonFileStorage:
    """Persists the recent sounds list as one JSON array, oldest first."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> List[PlayedItem]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, list):
                raise ValueError("expected a JSON array")
            return [PlayedItem.from_dict(entry) for entry in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable recent sounds file {self.path}: {e}")
            return []

    def save(self, items: List[PlayedItem]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".recent_sounds-", suffix=".json", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([item.to_dict() for item in items], f, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            os.unlink(tmp_name)
            raise


class RecentSoundsStore:
    """Bounded, insertion-ordered registry of played sounds.

    Re-recording a filename moves it to the most-recent position. Once the
    store holds more than ``capacity`` entries the oldest inserted ones are
    evicted. The whole list is rewritten to ``storage`` after every change.
    """

    def __init__(
        self,
        storage: Optional[JsonFileStorage] = None,
        capacity: int = MAX_SOUNDS,
        clock: Callable[[], int] = now_millis,
    ):
        self.capacity = capacity
        self._storage = storage
        self._clock = clock
        self._lock = threading.Lock()
        self._sounds: "OrderedDict[str, PlayedItem]" = OrderedDict()
        self._listeners = ChangeNotifier()
        if storage is not None:
            with self._lock:
                for item in storage.load():
                    self._sounds.pop(item.filename, None)
                    self._sounds[item.filename] = item
                self._trim()
            logger.info(f"Loaded {len(self._sounds)} recent sounds from {storage.path}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecentSoundsStore":
        return cls(
            storage=JsonFileStorage(settings.recent_sounds_file),
            capacity=settings.max_recent_sounds,
        )

    def _trim(self) -> None:
        while len(self._sounds) > self.capacity:
            self._sounds.popitem(last=False)

    def record(self, filename: str) -> PlayedItem:
        item = PlayedItem(
            filename=filename,
            display_name=display_name_for(filename),
            color=color_for_sound(filename),
            played_at=self._clock(),
        )
        with self._lock:
            self._sounds.pop(filename, None)
            self._sounds[filename] = item
            self._trim()
            if self._storage is not None:
                try:
                    self._storage.save(list(self._sounds.values()))
                except OSError:
                    # The play already happened; keep the in-memory list
                    logger.exception(f"Could not save recent sounds to {self._storage.path}")
        self._listeners.notify()
        return item

    def list(self) -> Tuple[PlayedItem, ...]:
        """Most recently played first."""
        with self._lock:
            return tuple(reversed(self._sounds.values()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sounds)

    def to_dict(self) -> dict:
        sounds = self.list()
        return {
            "sounds": [item.to_dict() for item in sounds],
            "count": len(sounds),
        }

    def add_change_listener(self, listener: Listener) -> None:
        self._listeners.subscribe(listener)

    def remove_change_listener(self, listener: Listener) -> None:
        self._listeners.unsubscribe(listener)
