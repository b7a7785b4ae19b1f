import logging
import threading

from audio_player import AudioPlayer, MpvBackend
from config import Settings, get_settings
from flask_app import create_app, run_flask
from rate_limiter import RateLimiter
from recent_sounds import RecentSoundsStore
from soundboard import Soundboard
from utils import MediaResolver, get_local_ip


def configure_logging(settings: Settings) -> None:
    log_file = settings.log_file
    if log_file is None and not settings.headless:
        # Keep log lines from painting over the console
        log_file = settings.data_dir / "soundboard.log"
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        filename=str(log_file) if log_file else None,
    )


def build_services(settings: Settings):
    rate_limiter = RateLimiter.from_settings(settings)
    recent_sounds = RecentSoundsStore.from_settings(settings)
    player = AudioPlayer(MpvBackend.from_settings(settings))
    soundboard = Soundboard(player, recent_sounds, MediaResolver.from_settings(settings))
    return soundboard, rate_limiter


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    soundboard, rate_limiter = build_services(settings)
    app = create_app(soundboard, rate_limiter, poll_interval_seconds=settings.ui_poll_interval_seconds)

    try:
        if settings.headless:
            run_flask(app, settings)
            return

        flask_thread = threading.Thread(target=run_flask, args=(app, settings), daemon=True)
        flask_thread.start()

        from tui_app import SoundboardApp

        server_url = f"http://{get_local_ip()}:{settings.port}/ui"
        SoundboardApp(soundboard, rate_limiter, server_url).run()
    finally:
        soundboard.player.close()


if __name__ == "__main__":
    main()
