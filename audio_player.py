import itertools
import logging
import os
import shutil
import subprocess
import tempfile
import threading
from typing import Optional

import requests

from config import Settings
from data_models import PlaybackState
from errors import PlaybackError

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    PlaybackState.IDLE: {PlaybackState.PREPARING},
    PlaybackState.PREPARING: {PlaybackState.PLAYING, PlaybackState.ERROR, PlaybackState.IDLE},
    PlaybackState.PLAYING: {PlaybackState.IDLE, PlaybackState.ERROR},
    PlaybackState.ERROR: {PlaybackState.IDLE},
}


class MpvBackend:
    """Downloads a remote sound and plays it with MPV."""

    def __init__(
        self,
        command: str = "mpv",
        volume: int = 70,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.command = command
        self.volume = volume
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "MpvBackend":
        return cls(
            command=settings.player_command,
            volume=settings.player_volume,
            timeout=settings.request_timeout_seconds,
        )

    def check_available(self) -> None:
        if shutil.which(self.command) is None:
            raise PlaybackError(f"Player executable '{self.command}' not found")

    def prepare(self, url: str) -> str:
        """Fetch ``url`` into a temporary file and return its path."""
        response = self.session.get(url, stream=True, timeout=self.timeout)
        response.raise_for_status()
        fd, path = tempfile.mkstemp(prefix="soundboard-", suffix=os.path.splitext(url)[1])
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in response.iter_content(chunk_size=64 * 1024):
                    f.write(chunk)
        except BaseException:
            self.discard(path)
            raise
        finally:
            response.close()
        return path

    def start(self, path: str) -> subprocess.Popen:
        cmd = [
            self.command,
            "--no-video",
            "--really-quiet",
            "--keep-open=no",
            f"--volume={self.volume}",
            path,
        ]
        return subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

    def discard(self, path: Optional[str]) -> None:
        if not path:
            return
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


class _Session:
    _ids = itertools.count(1)

    def __init__(self, url: str):
        self.id = next(self._ids)
        self.url = url
        self.path: Optional[str] = None
        self.process = None


class AudioPlayer:
    """Single-session player: idle -> preparing -> playing -> idle.

    ``play`` returns as soon as the new session is in PREPARING; the source is
    fetched on a worker thread and playback starts once it is ready. Errors
    and natural completion both bring the player back to IDLE. Every state
    change, including the callbacks from the worker thread, happens under
    one lock, and callbacks from a replaced session are ignored.
    """

    def __init__(self, backend: Optional[MpvBackend] = None):
        self._backend = backend or MpvBackend()
        self._lock = threading.RLock()
        self._state = PlaybackState.IDLE
        self._session: Optional[_Session] = None
        self._closed = False
        self.last_error: Optional[str] = None

    @property
    def state(self) -> PlaybackState:
        with self._lock:
            return self._state

    def _transition(self, new_state: PlaybackState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid playback transition {self._state.value} -> {new_state.value}")
        logger.debug(f"Playback {self._state.value} -> {new_state.value}")
        self._state = new_state

    def play(self, url: str) -> None:
        self._backend.check_available()
        with self._lock:
            if self._closed:
                raise PlaybackError("Player has been released")
            stale = self._stop_locked()
            session = _Session(url)
            self._session = session
            self._transition(PlaybackState.PREPARING)
        self._reap(stale)

        logger.info(f"Preparing playback of {url}")
        worker = threading.Thread(
            target=self._prepare, args=(session,), name=f"playback-{session.id}", daemon=True
        )
        worker.start()

    def _prepare(self, session: _Session) -> None:
        try:
            path = self._backend.prepare(session.url)
        except Exception as e:
            logger.error(f"Failed to prepare {session.url}: {e}")
            self._on_error(session, str(e))
            return
        process = self._on_ready(session, path)
        if process is None:
            return
        process.wait()
        self._on_completion(session, process.returncode)

    def _on_ready(self, session: _Session, path: str):
        with self._lock:
            if session is not self._session:
                self._backend.discard(path)
                return None
            session.path = path
            try:
                session.process = self._backend.start(path)
            except Exception as e:
                logger.exception(f"Failed to start playback of {session.url}")
                self._fail_locked(str(e))
                return None
            self._transition(PlaybackState.PLAYING)
            logger.info(f"Playing {session.url}")
            return session.process

    def _on_completion(self, session: _Session, returncode: int) -> None:
        with self._lock:
            if session is not self._session:
                return
            if returncode != 0:
                logger.error(f"Player exited with code {returncode} for {session.url}")
                self._fail_locked(f"player exited with code {returncode}")
            else:
                logger.info(f"Finished playing {session.url}")
                self._reset_locked()

    def _on_error(self, session: _Session, message: str) -> None:
        with self._lock:
            if session is not self._session:
                return
            self._fail_locked(message)

    def _fail_locked(self, message: str) -> None:
        self.last_error = message
        self._transition(PlaybackState.ERROR)
        self._reset_locked()

    def _reset_locked(self) -> None:
        session = self._session
        self._session = None
        if session is not None:
            self._backend.discard(session.path)
        if self._state is not PlaybackState.IDLE:
            self._transition(PlaybackState.IDLE)

    def _stop_locked(self):
        """Tear down the session; returns a terminated process still to be reaped."""
        session = self._session
        if session is None:
            return None
        process = session.process
        if process is not None and process.poll() is None:
            process.terminate()
        else:
            process = None
        logger.info(f"Stopped playback of {session.url}")
        self._reset_locked()
        return process

    def _reap(self, process) -> None:
        # Runs outside the lock; stale sessions are already detached
        if process is None:
            return
        try:
            process.wait(timeout=1)
        except subprocess.TimeoutExpired:
            process.kill()

    def stop(self) -> None:
        with self._lock:
            stale = self._stop_locked()
        self._reap(stale)

    def is_playing(self) -> bool:
        with self._lock:
            try:
                return (
                    self._state is PlaybackState.PLAYING
                    and self._session is not None
                    and self._session.process.poll() is None
                )
            except Exception:
                logger.debug("Playback state query failed", exc_info=True)
                return False

    def close(self) -> None:
        with self._lock:
            stale = self._stop_locked()
            self._closed = True
        self._reap(stale)
