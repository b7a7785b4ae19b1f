import logging
import socket

from flask import Flask, jsonify, render_template_string, request
from zeroconf import ServiceInfo, Zeroconf

from config import Settings
from errors import MediaResolutionError
from rate_limiter import RateLimiter
from soundboard import Soundboard
from utils import get_local_ip

logger = logging.getLogger(__name__)

ENDPOINTS = [
    "/play?file=<name>.mp3",
    "/play-url?url=<page url>",
    "/stop",
    "/status",
    "/recent",
    "/rate-limits",
    "/ui",
]

INDEX_TEMPLATE = """
<!doctype html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Soundboard</title>
    <style>
        body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; max-width: 800px; margin: 2rem auto; padding: 0 1rem; color: #333; }
        code, pre { background: #f4f4f9; padding: 2px 6px; border-radius: 4px; }
        pre { padding: 12px; }
    </style>
</head>
<body>
    <h1>Soundboard Server</h1>
    <p><a href="/ui">Open the soundboard</a></p>
    <h2>Endpoints:</h2>
    <ul>
        <li><code>GET /play?file=&lt;filename&gt;.mp3</code> - Play a sound from {{ base_url }}</li>
        <li><code>GET /play-url?url=&lt;page url&gt;</code> - Play the sound embedded in a sound page</li>
        <li><code>GET /stop</code> - Stop current playback</li>
        <li><code>GET /status</code> - Get server status</li>
        <li><code>GET /recent</code> - Recently played sounds</li>
        <li><code>GET /rate-limits</code> - Per-IP quotas ({{ max_requests }} plays per {{ window_minutes }} minutes)</li>
        <li><code>GET /ui</code> - Interactive soundboard</li>
    </ul>
    <h2>Example:</h2>
    <pre>curl "http://{{ host }}/play?file=mgs-alert.mp3"</pre>
</body>
</html>
"""

UI_TEMPLATE = """
<!doctype html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Soundboard</title>
    <style>
        body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; max-width: 900px; margin: 2rem auto; padding: 0 1rem; background: #f4f4f9; color: #333; }
        .container { background: white; padding: 2rem; border-radius: 12px; box-shadow: 0 4px 6px rgba(0,0,0,0.1); }
        h1 { margin-top: 0; color: #2c3e50; text-align: center; }
        h2 { border-bottom: 2px solid #eee; padding-bottom: 0.5rem; color: #444; }
        .row { display: flex; gap: 8px; margin-bottom: 1rem; }
        input[type="text"] { flex-grow: 1; padding: 12px; border: 2px solid #ddd; border-radius: 8px; font-size: 1rem; }
        input[type="text"]:focus { border-color: #3498db; outline: none; }
        button { background: #3498db; color: white; border: none; padding: 12px 18px; border-radius: 8px; cursor: pointer; font-weight: bold; }
        button:hover { background: #2980b9; }
        button.stop { background: #e74c3c; width: 100%; }
        #sounds { display: grid; grid-template-columns: repeat(auto-fill, minmax(130px, 1fr)); gap: 10px; }
        .sound { color: #222; border-radius: 8px; padding: 18px 8px; text-align: center; cursor: pointer; word-break: break-word; font-weight: 600; }
        .empty-msg { text-align: center; color: #888; padding: 1.5rem; font-style: italic; }
        table { width: 100%; border-collapse: collapse; }
        th, td { text-align: left; padding: 10px; border-bottom: 1px solid #eee; }
        #quota-info { color: #888; font-size: 0.9em; }
        .notification { position: fixed; top: 20px; right: 20px; background-color: #4CAF50; color: white; padding: 15px; border-radius: 5px; opacity: 0; transition: opacity 0.5s ease-in-out; }
        .notification.show { opacity: 1; }
        .notification.error { background-color: #f44336; }
    </style>
</head>
<body>
    <div class="container">
        <h1>Soundboard</h1>

        <div class="row">
            <input type="text" id="file-input" placeholder="Sound file, e.g. mgs-alert.mp3">
            <button id="play-file-btn">Play</button>
        </div>
        <div class="row">
            <input type="text" id="url-input" placeholder="Paste a sound page link...">
            <button id="play-url-btn">Play Link</button>
        </div>
        <button class="stop" id="stop-btn">Stop</button>

        <h2>Recently Played</h2>
        <div id="sounds"><div class="empty-msg">No sounds played yet.</div></div>

        <h2>Rate Limits</h2>
        <div id="quota-info"></div>
        <table>
            <thead><tr><th>IP</th><th>Used</th><th>Limit</th></tr></thead>
            <tbody id="quotas"></tbody>
        </table>
    </div>

    <div id="notification" class="notification"></div>

    <script>
        const POLL_INTERVAL_MS = {{ poll_interval_ms }};

        function showNotification(message, isError = false) {
            const notificationDiv = document.getElementById('notification');
            notificationDiv.textContent = message;
            notificationDiv.className = 'notification show';
            if (isError) {
                notificationDiv.classList.add('error');
            }
            setTimeout(() => {
                notificationDiv.classList.remove('show');
            }, 3000);
        }

        async function callEndpoint(path) {
            try {
                const response = await fetch(path, { method: 'POST' });
                const data = await response.json();
                if (response.status === 429) {
                    showNotification(`Rate limited (${data.used}/${data.limit}), retry in ${data.retryAfterSeconds}s`, true);
                } else if (!response.ok) {
                    showNotification(data.error || 'Request failed', true);
                } else if (data.file) {
                    showNotification(`Playing ${data.file}`);
                } else {
                    showNotification('Stopped');
                }
            } catch (error) {
                console.error('Request failed:', error);
                showNotification('Could not reach the soundboard.', true);
            }
            refreshRecent();
            refreshRateLimits();
        }

        function playFile(file) {
            callEndpoint(`/play?file=${encodeURIComponent(file)}`);
        }

        async function refreshRecent() {
            try {
                const response = await fetch('/recent');
                const data = await response.json();
                const soundsDiv = document.getElementById('sounds');
                soundsDiv.innerHTML = '';
                if (data.count === 0) {
                    soundsDiv.innerHTML = '<div class="empty-msg">No sounds played yet.</div>';
                    return;
                }
                data.sounds.forEach(sound => {
                    const tile = document.createElement('div');
                    tile.className = 'sound';
                    tile.style.backgroundColor = sound.color;
                    tile.textContent = sound.displayName;
                    tile.title = sound.filename;
                    tile.addEventListener('click', () => playFile(sound.filename));
                    soundsDiv.appendChild(tile);
                });
            } catch (error) {
                console.error('Error refreshing recent sounds:', error);
            }
        }

        async function refreshRateLimits() {
            try {
                const response = await fetch('/rate-limits');
                const data = await response.json();
                document.getElementById('quota-info').textContent =
                    `${data.maxRequests} plays per ${data.windowMinutes} minutes per device`;
                const body = document.getElementById('quotas');
                body.innerHTML = '';
                data.quotas.forEach(quota => {
                    const row = document.createElement('tr');
                    [quota.ip, quota.used, quota.limit].forEach(value => {
                        const cell = document.createElement('td');
                        cell.textContent = value;
                        row.appendChild(cell);
                    });
                    body.appendChild(row);
                });
            } catch (error) {
                console.error('Error refreshing rate limits:', error);
            }
        }

        document.getElementById('play-file-btn').addEventListener('click', () => {
            const file = document.getElementById('file-input').value.trim();
            if (!file) {
                showNotification('Please enter a sound file.', true);
                return;
            }
            playFile(file);
        });
        document.getElementById('play-url-btn').addEventListener('click', () => {
            const url = document.getElementById('url-input').value.trim();
            if (!url) {
                showNotification('Please paste a sound page link.', true);
                return;
            }
            callEndpoint(`/play-url?url=${encodeURIComponent(url)}`);
        });
        document.getElementById('stop-btn').addEventListener('click', () => callEndpoint('/stop'));

        document.addEventListener('DOMContentLoaded', () => {
            refreshRecent();
            refreshRateLimits();
        });
        setInterval(() => {
            refreshRecent();
            refreshRateLimits();
        }, POLL_INTERVAL_MS);
    </script>
</body>
</html>
"""


def create_app(
    soundboard: Soundboard,
    rate_limiter: RateLimiter,
    poll_interval_seconds: int = 3,
) -> Flask:
    """Build the HTTP front door around already constructed services."""
    app = Flask(__name__)
    resolver = soundboard.resolver

    def client_ip() -> str:
        return request.remote_addr or "unknown"

    def rate_limited(result):
        body = {
            "error": "Rate limit exceeded",
            "used": result.used,
            "limit": result.limit,
            "retryAfterSeconds": result.retry_after_seconds,
        }
        response = jsonify(body)
        response.status = "429 Too Many Requests"
        response.headers["Retry-After"] = str(result.retry_after_seconds)
        return response

    def play(filename: str, **extra):
        try:
            url = soundboard.play_sound(filename)
        except Exception as e:
            logger.exception(f"Failed to play {filename}")
            return jsonify({"error": "Failed to play sound", "message": str(e)}), 500
        return jsonify({"status": "playing", "file": filename, "url": url, **extra})

    @app.route("/play", methods=["GET", "POST"])
    def play_file():
        filename = request.args.get("file", "").strip()
        if not filename:
            return jsonify({"error": "Missing 'file' parameter", "usage": "/play?file=example.mp3"}), 400

        result = rate_limiter.check_and_record(client_ip())
        if not result.allowed:
            return rate_limited(result)
        return play(filename)

    @app.route("/play-url", methods=["GET", "POST"])
    def play_page_url():
        page_url = request.args.get("url", "").strip()
        if not page_url:
            return jsonify({"error": "Missing 'url' parameter", "usage": "/play-url?url=<page url>"}), 400

        result = rate_limiter.check_and_record(client_ip())
        if not result.allowed:
            return rate_limited(result)

        try:
            filename = resolver.key_from_page(page_url)
        except MediaResolutionError as e:
            logger.error(f"Could not resolve {page_url}: {e}")
            return jsonify({"error": "Failed to fetch page", "message": str(e)}), 500
        if filename is None:
            return jsonify({"error": "No sound found on page", "url": page_url}), 400
        return play(filename, page=page_url)

    @app.route("/stop", methods=["GET", "POST"])
    def stop():
        soundboard.stop()
        return jsonify({"status": "stopped"})

    @app.route("/status")
    def status():
        return jsonify({"server": "running", "playing": soundboard.player.is_playing()})

    @app.route("/recent")
    def recent():
        return jsonify(soundboard.recent_sounds.to_dict())

    @app.route("/rate-limits")
    def rate_limits():
        return jsonify(rate_limiter.to_dict())

    @app.route("/ui")
    def ui():
        return render_template_string(UI_TEMPLATE, poll_interval_ms=poll_interval_seconds * 1000)

    @app.route("/")
    def index():
        return render_template_string(
            INDEX_TEMPLATE,
            host=request.host,
            base_url=resolver.base_url,
            max_requests=rate_limiter.max_requests,
            window_minutes=rate_limiter.window_minutes,
        )

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found", "endpoints": ENDPOINTS}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "endpoints": ENDPOINTS}), 405

    @app.errorhandler(500)
    def internal_error(e):
        original = getattr(e, "original_exception", None) or e
        return jsonify({"error": "Internal server error", "message": str(original)}), 500

    return app


def run_flask(app: Flask, settings: Settings) -> None:
    zeroconf = None
    info = None
    try:
        ip_address = get_local_ip()
        if settings.advertise_mdns:
            info = ServiceInfo(
                "_http._tcp.local.",
                f"{settings.service_name}._http._tcp.local.",
                addresses=[socket.inet_aton(ip_address)],
                port=settings.port,
                properties={"path": "/ui"},
                server="soundboard.local.",
            )
            zeroconf = Zeroconf()
            zeroconf.register_service(info)
            logger.info(f"mDNS service registered: {settings.service_name}._http._tcp.local.")

        logger.info(f"Starting HTTP server on http://{ip_address}:{settings.port}/ui")
        app.run(host=settings.host, port=settings.port, threaded=True, debug=False, use_reloader=False)
    finally:
        if zeroconf:
            logger.info("Unregistering mDNS service...")
            zeroconf.unregister_service(info)
            zeroconf.close()
