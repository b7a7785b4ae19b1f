class SoundboardError(Exception):
    """Base class for soundboard errors."""


class PlaybackError(SoundboardError):
    """The player could not start a session at all."""


class MediaResolutionError(SoundboardError):
    """Fetching a page to resolve a media key failed."""

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url
