"""cpulogger - entry point and interactive Textual display."""

import logging
import signal
import sys
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Static

from cpulogger.config import parse_args
from cpulogger.context import RunContext, open_run_context
from cpulogger.engine import select_top
from cpulogger.errors import ConfigError, CpuLoggerError, ReportError, SnapshotError
from cpulogger.models import Decision, ProcessUsage, ThresholdConfig, UsageReport
from cpulogger.monitor import CounterProvider, Scheduler
from cpulogger.report import iso_time

logger = logging.getLogger(__name__)


def usage_bar(percent: float, width: int = 20) -> str:
    """Render a usage percentage as a markup bar."""
    bar_len = min(max(int(percent / (100 / width)), 0), width)
    return "[green]█[/green]" * bar_len + "[dim]░[/dim]" * (width - bar_len)


class HeaderStats(Static):
    """Header widget showing total usage and threshold state."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, thresholds: ThresholdConfig, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._thresholds = thresholds
        self._report: UsageReport | None = None
        self._decision: Decision = Decision()

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_usage_info(), id="usage-info"),
            Static(self._get_threshold_info(), id="threshold-info"),
        )

    def update_report(self, report: UsageReport, decision: Decision) -> None:
        """Update the statistics from a usage report."""
        self._report = report
        self._decision = decision
        self._refresh_display()

    def _refresh_display(self) -> None:
        try:
            self.query_one("#usage-info", Static).update(self._get_usage_info())
            self.query_one("#threshold-info", Static).update(self._get_threshold_info())
        except NoMatches:
            pass  # Not mounted yet

    def _get_usage_info(self) -> str:
        if self._report is None:
            return "Measuring CPU usage..."
        report = self._report
        return (
            f"CPU \\[{usage_bar(report.total_usage_percent)}] {report.total_usage_percent:6.2f}%\n"
            f"Window: {report.elapsed_seconds:.2f}s ending {iso_time(report.window_end)}"
        )

    def _get_threshold_info(self) -> str:
        thresholds = self._thresholds
        lines = [
            f"Total threshold:   {thresholds.total_threshold_percent:.2f}%",
            f"Process threshold: {thresholds.process_threshold_percent:.2f}%",
        ]
        if self._decision.total_exceeded:
            lines.append("[bold red]Total threshold exceeded[/bold red]")
        if self._decision.exceeded_pids:
            pids = ", ".join(str(pid) for pid in sorted(self._decision.exceeded_pids))
            lines.append(f"[bold yellow]Over process threshold: {pids}[/bold yellow]")
        return "\n".join(lines)


class ProcessTable(Container):
    """Container for the top processes table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._current_pids: list[int] = []

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=10)
        table.add_column("Name", key="name", width=50)
        table.add_column("Usage", key="usage", width=10)

    def update_processes(self, processes: tuple[ProcessUsage, ...], exceeded: frozenset[int] = frozenset()) -> None:
        """
        Show the given processes in order.

        Rows are updated in place while the ranking is unchanged and
        rebuilt otherwise.
        """
        table = self.query_one("#process-table", DataTable)
        new_pids = [proc.pid for proc in processes]

        if new_pids == self._current_pids:
            for proc in processes:
                table.update_cell(str(proc.pid), "usage", self._format_usage(proc, exceeded))
            return

        table.clear()
        for proc in processes:
            table.add_row(
                str(proc.pid),
                proc.display_name[:50],
                self._format_usage(proc, exceeded),
                key=str(proc.pid),
            )
        self._current_pids = new_pids

    @staticmethod
    def _format_usage(proc: ProcessUsage, exceeded: frozenset[int]) -> str:
        text = f"{proc.usage_percent:6.2f} %"
        return f"[bold red]{text}[/bold red]" if proc.pid in exceeded else text


class CpuLoggerApp(App):
    """Interactive display of the latest usage report."""

    TITLE = "cpulogger"
    SUB_TITLE = "CPU usage logger"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 5;
    }

    Horizontal {
        height: auto;
    }

    #usage-info {
        width: 1fr;
        padding-right: 2;
    }

    #threshold-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
    ]

    def __init__(self, context: RunContext, update_queue: Queue, provider: CounterProvider | None = None) -> None:
        """
        Initialize the CpuLoggerApp.

        Args:
            context: Run context whose sinks include a DisplaySink on ``update_queue``.
            update_queue: Queue the scheduler thread pushes reports onto.
            provider: Counter source, psutil by default.
        """
        super().__init__()
        self._run_context = context
        self._thresholds = context.config.thresholds
        self._update_queue = update_queue
        self._scheduler = Scheduler(provider or CounterProvider(), context)
        self.error: CpuLoggerError | None = None

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(self._thresholds, id="header-stats")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the scheduler when the app is mounted."""
        self._scheduler.start()
        self.set_interval(0.25, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the queue, show the newest report and surface messages."""
        latest: tuple[UsageReport, Decision] | None = None
        while True:
            try:
                item = self._update_queue.get_nowait()
            except Empty:
                break
            if isinstance(item, str):
                self.notify(item, severity="warning")
            else:
                latest = item

        if latest is not None:
            self._update_ui(*latest)

        if not self._scheduler.is_running:
            # Finished its cycles or failed
            self.error = self._scheduler.error
            self.exit(return_code=0 if self.error is None else 1)

    def _update_ui(self, report: UsageReport, decision: Decision) -> None:
        """Update the widgets with a new report."""
        self.query_one("#header-stats", HeaderStats).update_report(report, decision)
        self.query_one(ProcessTable).update_processes(
            select_top(report.per_process_usage, self._thresholds.top_n),
            decision.exceeded_pids,
        )

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._scheduler.stop()
        self.exit()


def configure_logging(verbose: bool = False) -> None:
    """Set up root logging on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def install_signal_handlers(context: RunContext) -> None:
    """Turn SIGINT and SIGTERM into a cooperative stop request."""

    def handle_signal(signum, frame):
        logger.info(f"Signal {signal.strsignal(signum)} received, stopping")
        context.cancel()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


def main(argv: list[str] | None = None) -> int:
    """Entry point for cpulogger; returns the process exit status."""
    try:
        config = parse_args(argv)
    except ConfigError as e:
        configure_logging()
        logger.error(f"Invalid configuration: {e}")
        return 2

    configure_logging(config.verbose)
    display_queue: Queue = Queue()

    try:
        with open_run_context(config, display_queue) as context:
            if config.tui:
                app = CpuLoggerApp(context, display_queue)
                app.run()
                if app.error is not None:
                    raise app.error
            else:
                install_signal_handlers(context)
                Scheduler(CounterProvider(), context).run()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except (SnapshotError, ReportError) as e:
        logger.error(f"Stopped: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
