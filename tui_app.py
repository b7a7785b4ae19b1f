import datetime
from typing import List, Optional

from rich.text import Text
from textual import work
from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import (
    DataTable,
    Footer,
    Header,
    Label,
    Switch,
    TabbedContent,
    TabPane,
)

from data_models import ClientQuota, PlayedItem
from errors import PlaybackError
from rate_limiter import RateLimiter
from soundboard import Soundboard


# --- Textual host console ---
class SoundboardApp(App):
    CSS = """
    Screen {
        layout: vertical;
    }
    #server-info {
        height: auto;
        padding: 1;
        border-bottom: solid blue;
    }
    #rate-limit-row {
        height: auto;
        padding: 0 1;
    }
    #rate-limit-row Label {
        padding: 1 1;
    }
    DataTable {
        height: 1fr;
        border: solid green;
    }
    TabbedContent {
        height: 1fr;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("space", "play_item", "Play Selected"),
        ("t", "play_test_sound", "Test Sound"),
        ("s", "stop", "Stop"),
        ("r", "toggle_rate_limit", "Toggle Rate Limit"),
    ]

    def __init__(self, soundboard: Soundboard, rate_limiter: RateLimiter, server_url: str):
        super().__init__()
        self.soundboard = soundboard
        self.rate_limiter = rate_limiter
        self.server_url = server_url
        self._recent: List[PlayedItem] = []

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Label(f"Soundboard running at {self.server_url}", id="server-info")
        with Horizontal(id="rate-limit-row"):
            yield Label("Rate limiting:")
            yield Switch(value=self.rate_limiter.is_enabled(), id="rate-limit-switch")

        with TabbedContent(initial="tab-recent"):
            with TabPane("Recent Sounds", id="tab-recent"):
                yield DataTable(id="recent-table")
            with TabPane("Rate Limits", id="tab-quotas"):
                yield DataTable(id="quota-table")

        yield Footer()

    def on_mount(self) -> None:
        self.title = "Soundboard"

        recent_table = self.query_one("#recent-table", DataTable)
        recent_table.cursor_type = "row"
        recent_table.add_columns("", "Sound", "File", "Played At")

        quota_table = self.query_one("#quota-table", DataTable)
        quota_table.cursor_type = "row"
        quota_table.add_columns("IP", "Used", "Limit")

        self.soundboard.recent_sounds.add_change_listener(self._on_store_changed)
        self.rate_limiter.add_change_listener(self._on_store_changed)
        # Quotas also expire without any request arriving
        self.set_interval(5.0, self.refresh_tables)
        self.refresh_tables()

    def on_unmount(self) -> None:
        self.soundboard.recent_sounds.remove_change_listener(self._on_store_changed)
        self.rate_limiter.remove_change_listener(self._on_store_changed)

    def _on_store_changed(self) -> None:
        # Listeners fire on HTTP worker threads
        self.call_from_thread(self.refresh_tables)

    def refresh_tables(self) -> None:
        self._recent = list(self.soundboard.recent_sounds.list())
        self._update_recent_table(self.query_one("#recent-table", DataTable), self._recent)
        self._update_quota_table(self.query_one("#quota-table", DataTable), self.rate_limiter.snapshot())

    def _update_recent_table(self, table: DataTable, sounds: List[PlayedItem]) -> None:
        cursor_coord = table.cursor_coordinate
        table.clear()
        for idx, item in enumerate(sounds):
            played_at = datetime_label(item.played_at)
            table.add_row(
                Text("    ", style=f"on {item.color}"),
                item.display_name,
                item.filename,
                played_at,
                key=str(idx),
            )
        if cursor_coord.row < len(sounds):
            table.move_cursor(row=cursor_coord.row, column=cursor_coord.column)

    def _update_quota_table(self, table: DataTable, quotas: List[ClientQuota]) -> None:
        table.clear()
        for quota in quotas:
            table.add_row(quota.ip, str(quota.used), str(quota.limit), key=quota.ip)

    def on_switch_changed(self, event: Switch.Changed) -> None:
        if event.switch.id == "rate-limit-switch":
            self.rate_limiter.set_enabled(event.value)
            state = "enabled" if event.value else "disabled"
            self.notify(f"Rate limiting {state}")

    def action_toggle_rate_limit(self) -> None:
        switch = self.query_one("#rate-limit-switch", Switch)
        switch.value = not switch.value

    def action_play_item(self) -> None:
        tabbed = self.query_one(TabbedContent)
        if tabbed.active != "tab-recent":
            return
        table = self.query_one("#recent-table", DataTable)
        row = table.cursor_coordinate.row
        if 0 <= row < len(self._recent):
            self.play_worker(self._recent[row].filename)

    def action_play_test_sound(self) -> None:
        self.play_worker(None)

    def action_stop(self) -> None:
        self.soundboard.stop()
        self.notify("Playback stopped")

    @work(thread=True)
    def play_worker(self, filename: Optional[str]) -> None:
        try:
            if filename is None:
                self.soundboard.play_test_sound()
            else:
                self.soundboard.play_sound(filename)
        except PlaybackError as e:
            self.call_from_thread(self.notify, f"Could not play: {e}", severity="error")


def datetime_label(played_at_ms: int) -> str:
    return datetime.datetime.fromtimestamp(played_at_ms / 1000).strftime("%H:%M:%S")
