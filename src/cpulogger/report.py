"""Report formatting and output sinks."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from queue import Queue
from typing import TextIO

from rich.console import Console

from cpulogger.engine import select_top
from cpulogger.errors import ReportError
from cpulogger.models import Decision, ThresholdConfig, UsageReport

logger = logging.getLogger(__name__)

TABLE_WIDTH = 80


def iso_time(moment: datetime) -> str:
    """Format a timestamp as ISO 8601 with microseconds and UTC offset."""
    return moment.isoformat(timespec="microseconds")


def format_usage_table(report: UsageReport, top_n: int) -> str:
    """Format total usage and the top-N processes as a fixed-width table."""
    inner = TABLE_WIDTH - 2
    divider = "-" * TABLE_WIDTH
    lines = [
        f"{'CPU usage':-^{TABLE_WIDTH}}",
        f"|{f'{report.total_usage_percent:.2f} %':^{inner}}|",
        f"|{iso_time(report.window_end):^{inner}}|",
        divider,
        f"| {'PID':<10} | {'Name':<50} | {'Usage':<10} |",
        f"|{'':-<12}|{'':-<52}|{'':-<12}|",
    ]
    for usage in select_top(report.per_process_usage, top_n):
        lines.append(
            f"| {usage.pid:<10} | {usage.display_name[:50]:<50} | "
            f"{f'{usage.usage_percent:.2f} %':<10} |"
        )
    lines.append(divider)
    return "\n".join(lines)


def format_total_event(report: UsageReport, config: ThresholdConfig) -> str:
    """Format the line announcing a total usage threshold crossing."""
    return (
        f"Total CPU usage threshold of {config.total_threshold_percent:.2f}% exceeded "
        f"-> {report.total_usage_percent:.2f}%"
    )


def format_process_events(report: UsageReport, decision: Decision, config: ThresholdConfig) -> list[str]:
    """Format one line per process that crossed its own threshold, busiest first."""
    return [
        f"Single process CPU usage threshold of {config.process_threshold_percent:.2f}% exceeded "
        f"-> [Pid: {usage.pid}] Name: '{usage.display_name}' Usage: {usage.usage_percent:.2f}%"
        for usage in report.per_process_usage
        if usage.pid in decision.exceeded_pids
    ]


def format_report(
    report: UsageReport,
    decision: Decision,
    config: ThresholdConfig,
    always_table: bool = False,
) -> str:
    """
    Build the human-readable text for one cycle.

    The top-N table is included when total usage crossed its threshold, or
    unconditionally when ``always_table`` is set (interactive output).
    Processes over their own threshold are listed as standalone lines in
    either case. Returns an empty string when there is nothing to say.
    """
    process_lines = format_process_events(report, decision, config)

    if always_table:
        # Table first on screen, event lines underneath
        blocks = [format_usage_table(report, config.top_n)]
        if decision.total_exceeded:
            blocks.append(format_total_event(report, config))
        if process_lines:
            blocks.append("\n".join(process_lines))
        return "\n\n".join(blocks)

    lines: list[str] = []
    if decision.total_exceeded:
        lines.append(format_total_event(report, config))
        lines.append(format_usage_table(report, config.top_n))
    lines.extend(process_lines)
    return "\n".join(lines)


class Sink(ABC):
    """Destination for formatted reports."""

    name = "sink"
    events_only = False

    def emit(self, text: str, report: UsageReport, decision: Decision) -> None:
        """Deliver one cycle's report."""
        self.write(text)

    def announce(self, message: str) -> None:
        """Deliver a free-form status message."""
        self.write(message)

    @abstractmethod
    def write(self, text: str) -> None:
        """Write raw text to the destination."""


class ConsoleSink(Sink):
    """Writes reports to standard output, redrawing the screen each cycle."""

    name = "console"

    def __init__(self, console: Console | None = None, clear: bool = True) -> None:
        self._console = console or Console()
        self._clear = clear

    def emit(self, text: str, report: UsageReport, decision: Decision) -> None:
        if self._clear:
            self._console.clear()
        self.write(text)

    def write(self, text: str) -> None:
        self._console.print(text, markup=False, highlight=False, soft_wrap=True)
        self._console.file.flush()


class LogFileSink(Sink):
    """
    Appends event reports to an already opened log file.

    Every line is prefixed with the time of writing so events can be
    grepped out of a long running log.
    """

    name = "log-file"
    events_only = True

    def __init__(self, handle: TextIO, clock=None) -> None:
        self._handle = handle
        self._clock = clock or (lambda: datetime.now().astimezone())

    def write(self, text: str) -> None:
        prefix = f"{iso_time(self._clock())} | "
        lines = ["", *text.split("\n")]
        self._handle.write("\n".join(f"{prefix}{line}" for line in lines) + "\n")
        self._handle.flush()


class DisplaySink(Sink):
    """Hands reports to the interactive display through a thread-safe queue."""

    name = "display"

    def __init__(self, update_queue: Queue) -> None:
        self._queue = update_queue

    def emit(self, text: str, report: UsageReport, decision: Decision) -> None:
        self._queue.put((report, decision))

    def write(self, text: str) -> None:
        self._queue.put(text)


class Reporter:
    """Formats usage reports and fans them out to every configured sink."""

    def __init__(self, sinks: list[Sink], config: ThresholdConfig) -> None:
        self._sinks = list(sinks)
        self._config = config

    @property
    def sinks(self) -> list[Sink]:
        return list(self._sinks)

    def report(self, usage_report: UsageReport, decision: Decision) -> int:
        """
        Write the report to each sink that wants it.

        Sinks flagged ``events_only`` are skipped unless a threshold fired.
        A failing sink is logged and does not stop delivery to the others.

        Returns:
            Number of sinks the report was delivered to.

        Raises:
            ReportError: If every attempted sink failed.
        """
        full_text: str | None = None
        event_text: str | None = None
        attempted = 0
        failures: dict[str, OSError] = {}

        for sink in self._sinks:
            if sink.events_only:
                if not decision.fired:
                    continue
                if event_text is None:
                    event_text = format_report(usage_report, decision, self._config)
                text = event_text
            else:
                if full_text is None:
                    full_text = format_report(usage_report, decision, self._config, always_table=True)
                text = full_text

            attempted += 1
            try:
                sink.emit(text, usage_report, decision)
            except OSError as e:
                logger.warning(f"Failed to write report to {sink.name} sink: {e}")
                failures[sink.name] = e

        if attempted and len(failures) == attempted:
            raise ReportError(
                f"Report could not be written to any sink ({', '.join(failures)})",
                failures=failures,
            )
        return attempted - len(failures)

    def announce(self, message: str) -> None:
        """Best-effort delivery of a status message to all sinks."""
        for sink in self._sinks:
            try:
                sink.announce(message)
            except OSError as e:
                logger.warning(f"Failed to write message to {sink.name} sink: {e}")
