from unittest.mock import MagicMock

import pytest
import requests

from errors import MediaResolutionError
from utils import MediaResolver, extract_media_key


class TestLocator:
    def test_joins_base_and_filename(self) -> None:
        resolver = MediaResolver("https://sounds.example/media/sounds/")

        assert resolver.locator_for("mgs-alert.mp3") == "https://sounds.example/media/sounds/mgs-alert.mp3"

    def test_adds_missing_trailing_slash(self) -> None:
        resolver = MediaResolver("https://sounds.example/media/sounds")

        assert resolver.locator_for("a.mp3") == "https://sounds.example/media/sounds/a.mp3"


class TestExtractMediaKey:
    """Finding the sound file embedded in a page."""

    def test_from_onclick_handler(self) -> None:
        html = """<button onclick="play('/media/sounds/vine-boom.mp3', 'loader-9', 'vine-boom-9')"></button>"""

        assert extract_media_key(html) == "vine-boom.mp3"

    def test_from_og_audio_meta(self) -> None:
        html = """
        <html><head>
          <meta property="og:audio" content="https://www.myinstants.com/media/sounds/bruh.mp3">
        </head><body></body></html>
        """

        assert extract_media_key(html) == "bruh.mp3"

    def test_from_download_link(self) -> None:
        html = '<a href="/media/sounds/airhorn.mp3" download>Download MP3</a>'

        assert extract_media_key(html) == "airhorn.mp3"

    def test_first_match_wins(self) -> None:
        html = """
        <button onclick="play('/media/sounds/first.mp3')"></button>
        <button onclick="play('/media/sounds/second.mp3')"></button>
        """

        assert extract_media_key(html) == "first.mp3"

    @pytest.mark.parametrize(
        "html",
        [
            "",
            "<html><body>No sounds</body></html>",
            "<a href='/media/images/logo.png'>logo</a>",
        ],
    )
    def test_none_when_no_sound(self, html: str) -> None:
        assert extract_media_key(html) is None


class TestKeyFromPage:
    def test_fetches_page_with_browser_headers(self) -> None:
        session = MagicMock()
        session.get.return_value.text = "<button onclick=\"play('/media/sounds/a.mp3')\"></button>"
        resolver = MediaResolver("https://sounds.example/", session=session, timeout=4)

        assert resolver.key_from_page("https://sounds.example/instant/a/") == "a.mp3"
        _, kwargs = session.get.call_args
        assert "User-Agent" in kwargs["headers"]
        assert kwargs["timeout"] == 4

    def test_network_error_raises_resolution_error(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.Timeout("timed out")
        resolver = MediaResolver("https://sounds.example/", session=session)

        with pytest.raises(MediaResolutionError) as exc_info:
            resolver.key_from_page("https://sounds.example/slow")
        assert exc_info.value.url == "https://sounds.example/slow"

    def test_http_error_raises_resolution_error(self) -> None:
        session = MagicMock()
        session.get.return_value.raise_for_status.side_effect = requests.HTTPError("404 Client Error")
        resolver = MediaResolver("https://sounds.example/", session=session)

        with pytest.raises(MediaResolutionError):
            resolver.key_from_page("https://sounds.example/missing")
