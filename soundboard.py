import logging

from audio_player import AudioPlayer
from recent_sounds import RecentSoundsStore
from utils import MediaResolver

logger = logging.getLogger(__name__)

TEST_SOUND = "mgs-alert.mp3"


class Soundboard:
    """Plays a sound by filename and remembers it as recently played."""

    def __init__(self, player: AudioPlayer, recent_sounds: RecentSoundsStore, resolver: MediaResolver):
        self.player = player
        self.recent_sounds = recent_sounds
        self.resolver = resolver

    def play_sound(self, filename: str) -> str:
        url = self.resolver.locator_for(filename)
        logger.info(f"Play request for {filename}")
        self.player.play(url)
        self.recent_sounds.record(filename)
        return url

    def play_test_sound(self) -> str:
        return self.play_sound(TEST_SOUND)

    def stop(self) -> None:
        self.player.stop()
