import threading
import time
from typing import List, Optional

import pytest

from audio_player import AudioPlayer
from errors import PlaybackError


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeProcess:
    def __init__(self):
        self.returncode: Optional[int] = None
        self._done = threading.Event()
        self.terminated = False

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        self._done.wait(timeout)
        return self.returncode

    def finish(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self._done.set()

    def terminate(self) -> None:
        self.terminated = True
        self.finish(-15)

    def kill(self) -> None:
        self.finish(-9)


class FakeBackend:
    """Stands in for MpvBackend; optionally holds prepare() until released."""

    def __init__(self, gated: bool = False):
        self.gate = threading.Event()
        if not gated:
            self.gate.set()
        self.prepare_error: Optional[Exception] = None
        self.available = True
        self.prepared: List[str] = []
        self.processes: List[FakeProcess] = []
        self.discarded: List[str] = []

    def check_available(self) -> None:
        if not self.available:
            raise PlaybackError("Player executable 'mpv' not found")

    def prepare(self, url: str) -> str:
        self.gate.wait(5)
        if self.prepare_error is not None:
            raise self.prepare_error
        path = f"/tmp/fake-{len(self.prepared)}.mp3"
        self.prepared.append(url)
        return path

    def start(self, path: str) -> FakeProcess:
        process = FakeProcess()
        self.processes.append(process)
        return process

    def discard(self, path: Optional[str]) -> None:
        if path:
            self.discarded.append(path)


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def player(backend: FakeBackend):
    player = AudioPlayer(backend)
    yield player
    player.close()
