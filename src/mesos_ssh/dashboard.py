"""TUI Dashboard for mesos-ssh."""

from __future__ import annotations

from typing import Sequence

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker

from .auth import Auth
from .collectors import InterleavedCollector, OutputLine
from .config import RunConfig
from .scheduler import Scheduler
from .session import SessionState
from .sink import RunOutcome, Stream

STATUS_ICONS = {
    SessionState.IDLE: ("○", "dim"),
    SessionState.CONNECTED: ("◐", "yellow"),
    SessionState.RUNNING: ("◐", "yellow"),
}
SUCCESS_ICON = ("●", "green")
FAILED_ICON = ("✗", "red")


def style_line(line: OutputLine) -> str:
    """Rich markup for one output line."""
    text = escape(f"[{line.stream.tag}] {line.text}")
    if line.stream is Stream.STDERR:
        return f"[red]{text}[/red]"
    if line.stream is Stream.EXIT:
        return f"[bold]{text}[/bold]"
    return text


def status_icon(state: SessionState, outcome: RunOutcome | None = None) -> tuple[str, str]:
    if state is SessionState.TERMINATED:
        if outcome is not None and (outcome.failed or outcome.exit_status):
            return FAILED_ICON
        return SUCCESS_ICON
    return STATUS_ICONS[state]


class HostPanel(Static):
    """A panel displaying output for a single host."""

    session_state: reactive[SessionState] = reactive(SessionState.IDLE)

    def __init__(self, host: str, user: str, port: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.host_name = host
        self.user = user
        self.port = port
        self.outcome: RunOutcome | None = None

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), classes="host-header")
        yield RichLog(highlight=False, markup=True, wrap=True, auto_scroll=True)

    def _get_header(self) -> str:
        icon, color = status_icon(self.session_state, self.outcome)
        return (
            f"[{color}]{icon}[/] [{color}][bold]{escape(self.host_name)}[/bold][/] "
            f"[{color}]{escape(self.user)}@{escape(self.host_name)}:{self.port}[/]"
        )

    def watch_session_state(self, state: SessionState) -> None:
        """Update header when state changes."""
        if not self.is_mounted:
            return
        self.query_one(Label).update(self._get_header())

    def append_output(self, line: OutputLine) -> None:
        self.query_one(RichLog).write(style_line(line))


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return f"Progress: {self.completed}/{self.total} hosts complete | {status} | Press 'q' to quit"


class HostOutput(Message):
    """Message for host output."""

    def __init__(self, line: OutputLine) -> None:
        self.line = line
        super().__init__()


class HostStateChange(Message):
    """Message for host state change."""

    def __init__(self, host: str, state: SessionState) -> None:
        self.host = host
        self.state = state
        super().__init__()


class Dashboard(App):
    """Runs the command on every host and shows each host in its own panel."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
    }

    HostPanel {
        border: solid $primary;
        height: 100%;
        min-height: 10;
    }

    HostPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    HostPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(
        self, hosts: Sequence[str], config: RunConfig, auth: Auth, **kwargs
    ) -> None:
        super().__init__(**kwargs)
        self.hosts = list(hosts)
        self.config = config
        self.auth = auth
        self.panels: dict[str, HostPanel] = {}
        self.scheduler: Scheduler | None = None
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        for host in self.hosts:
            panel = HostPanel(host, self.config.user, self.config.port)
            self.panels[host] = panel
            yield panel

        yield StatusBar()
        yield Footer()

    def on_mount(self) -> None:
        """Start execution when the app mounts."""
        self.query_one(StatusBar).total = len(self.hosts)

        collector = InterleavedCollector(
            grace_period=self.config.grace_period, on_line=self._on_line
        )
        self.scheduler = Scheduler(
            self.hosts,
            self.config,
            collector,
            auth=self.auth,
            on_status=self._on_status,
        )
        self._worker = self.run_worker(self.scheduler.run(), exclusive=True)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == event.worker.state.SUCCESS:
            self.query_one(StatusBar).running = False

    def _on_line(self, line: OutputLine) -> None:
        self.post_message(HostOutput(line))

    def _on_status(self, host: str, state: SessionState) -> None:
        self.post_message(HostStateChange(host, state))

    def on_host_output(self, message: HostOutput) -> None:
        panel = self.panels.get(message.line.host)
        if panel is not None:
            panel.append_output(message.line)

    def on_host_state_change(self, message: HostStateChange) -> None:
        panel = self.panels.get(message.host)
        if panel is None:
            return
        if message.state is SessionState.TERMINATED and self.scheduler:
            panel.outcome = self.scheduler.outcomes.get(message.host)
            self.query_one(StatusBar).completed += 1
        panel.session_state = message.state

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
        if self.scheduler:
            self.scheduler.cancel()
        self.exit()
