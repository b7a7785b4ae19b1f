import logging
import re
import socket
from typing import Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from config import Settings
from errors import MediaResolutionError

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
}

# Sound buttons on myinstants pages look like
#   onclick="play('/media/sounds/mgs-alert.mp3', 'loader-1234', 'mgs-alert-1234')"
MEDIA_PATH_REGEX = re.compile(r"/media/sounds/([^'\"\s?#<>/]+\.(?:mp3|ogg|wav|m4a))", re.IGNORECASE)


class MediaResolver:
    """Turns sound keys and page links into playable URLs."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaResolver":
        return cls(settings.media_base_url, timeout=settings.request_timeout_seconds)

    def locator_for(self, filename: str) -> str:
        return self.base_url + filename

    def key_from_page(self, page_url: str) -> Optional[str]:
        """Fetch a sound page and return the media filename it embeds.

        Returns None when the page has no recognizable sound. Network and
        HTTP failures raise MediaResolutionError.
        """
        try:
            response = self.session.get(page_url, headers=HEADERS, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise MediaResolutionError(f"Could not fetch page: {e}", page_url) from e
        return extract_media_key(response.text)


def extract_media_key(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")

    meta_audio = soup.find("meta", property="og:audio")
    if meta_audio and meta_audio.get("content"):
        match = MEDIA_PATH_REGEX.search(urlparse(str(meta_audio["content"])).path)
        if match:
            return match.group(1)

    # Buttons carry the path in their onclick handler
    for tag in soup.find_all(attrs={"onclick": True}):
        match = MEDIA_PATH_REGEX.search(str(tag["onclick"]))
        if match:
            return match.group(1)

    match = MEDIA_PATH_REGEX.search(html)
    if match:
        return match.group(1)
    return None


def get_local_ip() -> str:
    """Best-effort LAN address of this host."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # Connecting a UDP socket sends nothing, it only picks a route
        s.connect(("8.8.8.8", 80))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()
