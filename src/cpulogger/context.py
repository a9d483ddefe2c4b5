"""Run-scoped state shared by the scheduler and the reporter."""

import logging
import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from queue import Queue

from cpulogger.config import RunConfig
from cpulogger.errors import ConfigError
from cpulogger.report import ConsoleSink, DisplaySink, LogFileSink, Reporter, Sink

logger = logging.getLogger(__name__)


class RunContext:
    """
    Holds the cancellation flag and the output sinks of one run.

    Passed explicitly to the Scheduler instead of living in module globals.
    """

    def __init__(
        self,
        config: RunConfig,
        sinks: list[Sink],
        stop_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.stop_event = stop_event or threading.Event()
        self.reporter = Reporter(sinks, config.thresholds)

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    def cancel(self) -> None:
        """Ask the scheduler to stop at its next suspension point."""
        self.stop_event.set()


@contextmanager
def open_run_context(config: RunConfig, display_queue: Queue | None = None) -> Iterator[RunContext]:
    """
    Create the sinks for ``config`` and yield a RunContext.

    The log file is opened once here and closed when the block exits,
    whether the run ended normally, was cancelled or failed.

    Raises:
        ConfigError: If the log file cannot be opened for appending.
    """
    with ExitStack() as stack:
        sinks: list[Sink] = []

        if config.tui:
            if display_queue is None:
                raise ValueError("display_queue is required for the interactive display")
            sinks.append(DisplaySink(display_queue))
        elif config.cli:
            sinks.append(ConsoleSink())

        if config.log_file is not None:
            try:
                handle = stack.enter_context(open(config.log_file, "a", encoding="utf-8"))
            except OSError as e:
                raise ConfigError(
                    f"Cannot open log file {config.log_file}: {e}",
                    field_name="log_file",
                    value=str(config.log_file),
                ) from e
            logger.debug(f"Appending threshold events to {config.log_file}")
            sinks.append(LogFileSink(handle))

        yield RunContext(config, sinks)
