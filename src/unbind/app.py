"""unbind - Main Textual application."""

from functools import partial
from queue import Empty, Queue

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.containers import Container
from textual.message import Message
from textual.widgets import DataTable, Footer, Static

from unbind.config import Settings, get_settings
from unbind.engine import Engine
from unbind.logging_config import setup_logging
from unbind.models import HistoryRecord, KillHint, PortEntry, PortFilter, PortView

INTERVAL_STEP_MS = 500


def row_key_for(entry: PortEntry) -> str:
    """Table row key for a port entry."""
    return f"{entry.port}:{entry.pid}:{entry.protocol.value}"


def history_line(record: HistoryRecord) -> str:
    """One history panel line, with the kill time in local time."""
    killed_at = record.killed_at.astimezone()
    return (
        f"{killed_at:%Y-%m-%d %H:%M:%S}  :{record.port:<5}  "
        f"{escape(record.process_name)} (PID {record.pid})"
    )


class PortNotification(Message):
    """Posted by the engine threads to show a notification."""

    def __init__(self, title: str, body: str) -> None:
        super().__init__()
        self.title = title
        self.body = body


class AppNotifier:
    """Notification capability that shows Textual toasts."""

    def __init__(self, app: App) -> None:
        self._app = app

    def is_granted(self) -> bool:
        return self._app.is_running

    def request_grant(self) -> bool:
        return self._app.is_running

    def dispatch(self, title: str, body: str) -> None:
        # post_message is thread-safe and does not wait for the UI thread.
        self._app.post_message(PortNotification(title, body))


class StatusBar(Static):
    """Status line showing the port count and the last error."""

    DEFAULT_CSS = """
    StatusBar {
        height: auto;
        padding: 0 1;
        background: $surface;
    }
    """

    def update_status(self, view: PortView, interval_ms: int) -> None:
        """Update the status line from a port view."""
        scanning = " [yellow]scanning...[/yellow]" if view.is_scanning else ""
        text = f"{len(view.visible_ports)} listening ports | every {interval_ms} ms{scanning}"
        if view.last_error is not None:
            text += f"\n[red]Error:[/red] {escape(str(view.last_error))}"
        self.update(text)


class HistoryPanel(Static):
    """Most recent kills."""

    DEFAULT_CSS = """
    HistoryPanel {
        height: auto;
        max-height: 12;
        padding: 0 1;
        border: solid $secondary;
    }
    """

    def update_history(self, records: list[HistoryRecord]) -> None:
        if not records:
            self.update("[dim]No processes killed yet[/dim]")
            return
        self.update("\n".join(history_line(r) for r in records[:10]))


class PortTable(Container):
    """Container for the port data table."""

    DEFAULT_CSS = """
    PortTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize PortTable."""
        super().__init__(*args, **kwargs)
        self._entries: dict[str, PortEntry] = {}

    def compose(self) -> ComposeResult:
        """Compose the port table."""
        yield DataTable(id="port-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#port-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PORT", key="port", width=7)
        table.add_column("PROTO", key="protocol", width=6)
        table.add_column("PID", key="pid", width=8)
        table.add_column("PROCESS", key="process", width=24)
        table.add_column("FAVORITE", key="favorite")

    def update_ports(self, ports: tuple[PortEntry, ...], labels: dict[int, str]) -> None:
        """
        Update the port table with new data.

        Rows are keyed by (port, pid, protocol); existing rows are updated
        in place and rows for vanished entries are removed.
        """
        table = self.query_one("#port-table", DataTable)
        new_entries = {row_key_for(entry): entry for entry in ports}

        for key in set(self._entries) - set(new_entries):
            try:
                table.remove_row(key)
            except Exception:
                pass  # Row may not exist

        for key, entry in new_entries.items():
            label = labels.get(entry.port, "")
            if key in self._entries:
                try:
                    table.update_cell(key, "favorite", label)
                    table.update_cell(key, "process", entry.process_name[:24])
                except Exception:
                    pass  # Row may have been removed
            else:
                try:
                    table.add_row(
                        str(entry.port),
                        entry.protocol.value,
                        str(entry.pid),
                        entry.process_name[:24],
                        label,
                        key=key,
                    )
                except Exception:
                    pass  # Row may already exist

        self._entries = new_entries

    def selected_entry(self) -> PortEntry | None:
        """The entry under the cursor, if any."""
        table = self.query_one("#port-table", DataTable)
        if table.row_count == 0:
            return None
        try:
            row_key = table.coordinate_to_cell_key(table.cursor_coordinate).row_key
        except Exception:
            return None
        return self._entries.get(row_key.value)


class UnbindApp(App):
    """Main unbind application."""

    TITLE = "unbind"
    SUB_TITLE = "Listening ports"

    CSS = """
    Screen {
        layout: vertical;
    }

    #status {
        dock: top;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("k", "kill", "Kill"),
        ("f", "favorite", "Favorite"),
        ("r", "refresh", "Refresh"),
        ("c", "clear_history", "Clear history"),
        ("plus", "slower", "Slower"),
        ("minus", "faster", "Faster"),
    ]

    def __init__(self, engine: Engine | None = None, settings: Settings | None = None) -> None:
        """Initialize the UnbindApp."""
        super().__init__()
        self._settings = settings or get_settings()
        self._update_queue: Queue[PortView] = Queue()
        self._engine = engine or Engine.from_settings(
            self._settings,
            notifier=AppNotifier(self),
            update_queue=self._update_queue,
        )
        self._port_filter: PortFilter = self._settings.port_filter

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield StatusBar("Scanning...", id="status")
        yield PortTable()
        yield HistoryPanel(id="history")
        yield Footer()

    def on_mount(self) -> None:
        """Start the engine when the app is mounted."""
        self._engine.start()
        self.set_interval(0.5, self._check_for_updates)
        self._refresh_history()

    def _check_for_updates(self) -> None:
        """Drain the queue and render the most recent view."""
        view = None
        while True:
            try:
                view = self._update_queue.get_nowait()
            except Empty:
                break

        if view is None:
            view = self._engine.view()
        self._update_ui(view)

    def on_port_notification(self, message: PortNotification) -> None:
        self.notify(message.body, title=message.title)

    def _update_ui(self, view: PortView) -> None:
        ports = tuple(p for p in view.visible_ports if self._port_filter.matches(p))
        self.query_one(PortTable).update_ports(ports, self._engine.favorites.labels())
        self.query_one("#status", StatusBar).update_status(view, self._engine.scanner.interval_ms)
        self._refresh_history()

    def _refresh_history(self) -> None:
        self.query_one("#history", HistoryPanel).update_history(self._engine.history.records())

    def action_kill(self) -> None:
        """Kill the process owning the selected port."""
        entry = self.query_one(PortTable).selected_entry()
        if entry is None or entry.pid <= 0:
            self.notify("No killable process selected", severity="warning")
            return
        hint = KillHint(port=entry.port, process_name=entry.process_name)
        self.run_worker(partial(self._kill, entry.pid, hint), thread=True)

    def _kill(self, pid: int, hint: KillHint) -> None:
        error = self._engine.attempt_kill(pid, hint)
        if error is None:
            self.call_from_thread(self.notify, f"Killed {hint.process_name} (PID {pid})")
        else:
            self.call_from_thread(self.notify, f"Kill failed: {error}", severity="error")

    def action_favorite(self) -> None:
        """Toggle the favorite flag of the selected port."""
        entry = self.query_one(PortTable).selected_entry()
        if entry is None:
            return
        favorites = self._engine.favorites
        if favorites.is_favorite(entry.port):
            ok = favorites.remove(entry.port)
        else:
            ok = favorites.add(entry.port, entry.process_name or f"Port {entry.port}")
        if not ok:
            self.notify("Favorite could not be saved", severity="error")
        self._update_ui(self._engine.view())

    def action_refresh(self) -> None:
        self.run_worker(self._engine.scan_now, thread=True)

    def action_clear_history(self) -> None:
        if not self._engine.history.clear():
            self.notify("History could not be cleared", severity="error")
        self._refresh_history()

    def action_slower(self) -> None:
        self._change_interval(INTERVAL_STEP_MS)

    def action_faster(self) -> None:
        self._change_interval(-INTERVAL_STEP_MS)

    def _change_interval(self, delta_ms: int) -> None:
        self._engine.set_interval(self._engine.scanner.interval_ms + delta_ms)
        self.notify(f"Scan interval: {self._engine.scanner.interval_ms} ms")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._engine.close()
        self.exit()


def main() -> None:
    """Entry point for the unbind application."""
    settings = get_settings()
    log_file = settings.log_file or settings.data_dir / "unbind.log"
    setup_logging(settings.log_level, log_file)
    app = UnbindApp(settings=settings)
    app.run()


if __name__ == "__main__":
    main()
