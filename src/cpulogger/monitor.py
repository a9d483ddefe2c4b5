"""Counter sampling and the measurement scheduler for cpulogger."""

import logging
import threading
import time
from datetime import datetime
from enum import Enum

import psutil

from cpulogger.context import RunContext
from cpulogger.engine import aggregate, evaluate
from cpulogger.errors import CpuLoggerError, SnapshotError
from cpulogger.models import CounterSnapshot, Decision, ProcessCounters, UsageReport

logger = logging.getLogger(__name__)


def split_cpu_times(times) -> tuple[float, float]:
    """
    Split a ``psutil.cpu_times()`` result into (busy, idle) seconds.

    I/O wait counts as idle. Guest time is already included in user time
    on Linux and is subtracted so it is not counted twice.
    """
    idle = times.idle + getattr(times, "iowait", 0.0)
    total = sum(times)
    total -= getattr(times, "guest", 0.0) + getattr(times, "guest_nice", 0.0)
    return max(0.0, total - idle), idle


class CounterProvider:
    """
    Captures CPU counter snapshots using psutil.

    Needs no setup between calls. Processes that exit or deny access while
    being read are left out of the snapshot rather than failing it.
    """

    def capture(self) -> CounterSnapshot:
        """
        Capture system-wide and per-process CPU counters.

        Raises:
            SnapshotError: If the system counters or the process table
                cannot be read.
        """
        timestamp = time.monotonic()
        captured_at = datetime.now().astimezone()

        try:
            busy, idle = split_cpu_times(psutil.cpu_times())
            cpu_count = psutil.cpu_count() or 1
        except (psutil.Error, OSError) as e:
            raise SnapshotError(f"Cannot read system CPU counters: {e}") from e

        return CounterSnapshot(
            timestamp=timestamp,
            captured_at=captured_at,
            total_busy_time=busy,
            total_idle_time=idle,
            per_process=self._collect_processes(),
            cpu_count=cpu_count,
        )

    def _collect_processes(self) -> dict[int, ProcessCounters]:
        """
        Collect CPU-time counters of all running processes.

        Handles NoSuchProcess, AccessDenied and ZombieProcess per process.
        """
        processes: dict[int, ProcessCounters] = {}

        try:
            for proc in psutil.process_iter(attrs=["pid", "name", "cpu_times"]):
                try:
                    info = proc.info
                    cpu_times = info.get("cpu_times")
                    if cpu_times is None:
                        # Access denied for this process
                        continue

                    pid = info.get("pid", proc.pid)
                    processes[pid] = ProcessCounters(
                        pid=pid,
                        display_name=info.get("name") or "",
                        cpu_time_consumed=cpu_times.user + cpu_times.system,
                    )
                except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                    continue
        except (psutil.AccessDenied, PermissionError) as e:
            raise SnapshotError(f"Permission denied while listing processes: {e}") from e
        except OSError as e:
            raise SnapshotError(f"Cannot list processes: {e}", transient=True) from e

        return processes


class SchedulerState(Enum):
    """Phases of the measurement cycle."""

    IDLE = "idle"
    MEASURING = "measuring"
    EVALUATING = "evaluating"
    WAITING = "waiting"
    STOPPED = "stopped"


class Scheduler:
    """
    Drives the measure / evaluate / wait cycle.

    Every suspension waits on the run context's stop event, so a stop
    request is honoured within the current wait. A cycle interrupted while
    measuring produces no report.
    """

    def __init__(self, provider: CounterProvider, context: RunContext) -> None:
        """
        Initialize the Scheduler.

        Args:
            provider: Source of counter snapshots.
            context: Run state holding the configuration, reporter and stop event.
        """
        self._provider = provider
        self._context = context
        self._config = context.config
        self._thresholds = context.config.thresholds
        self._state = SchedulerState.IDLE
        self._cycles_run = 0
        self._thread: threading.Thread | None = None
        self.error: CpuLoggerError | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def cycles_run(self) -> int:
        """Number of cycles attempted so far, including skipped ones."""
        return self._cycles_run

    @property
    def is_running(self) -> bool:
        """Check if the scheduler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def waiting_duration(self) -> float:
        """
        Seconds to wait after a cycle before measuring again.

        By default the wait comes on top of the measurement. With an
        inclusive interval the measurement time is part of the period.
        """
        between = self._config.time_between_measurements
        if self._config.inclusive_interval:
            return max(0.0, between - self._config.measurement_time)
        return between

    def _sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return True if cancelled meanwhile."""
        return self._context.stop_event.wait(timeout=seconds)

    def run_cycle(self) -> tuple[UsageReport, Decision] | None:
        """
        Measure once, evaluate and dispatch the report.

        Returns:
            The report and decision, or None if cancelled while measuring.

        Raises:
            SnapshotError: If counters could not be captured.
            ReportError: If no sink accepted the report.
        """
        self._state = SchedulerState.MEASURING
        start = self._provider.capture()
        if self._sleep(self._config.measurement_time):
            logger.debug("Cancelled during measurement, discarding cycle")
            return None
        end = self._provider.capture()

        self._state = SchedulerState.EVALUATING
        report = aggregate(start, end)
        decision = evaluate(report, self._thresholds)
        logger.debug(
            f"Total CPU usage {report.total_usage_percent:.2f}% over {report.elapsed_seconds:.3f}s, "
            f"{len(report.per_process_usage)} processes"
        )

        if decision.fired:
            logger.info(
                f"Threshold crossed: total={decision.total_exceeded}, "
                f"processes={sorted(decision.exceeded_pids)}"
            )
        if self._config.interactive or decision.fired:
            self._context.reporter.report(report, decision)

        return report, decision

    def run(self, max_cycles: int | None = None) -> None:
        """
        Run cycles in the calling thread until cancelled.

        Args:
            max_cycles: Stop after this many cycles. Defaults to the configured
                ``cycles``; 0 means no limit.

        Raises:
            SnapshotError: On a persistent counter failure.
            ReportError: If a report could not be written anywhere.
        """
        limit = self._config.cycles if max_cycles is None else max_cycles

        try:
            while not self._context.cancelled:
                try:
                    self.run_cycle()
                except SnapshotError as e:
                    if not e.transient:
                        # Logged by whoever handles the raised error
                        self._context.reporter.announce(f"CPU counters unavailable, stopping: {e}")
                        raise
                    logger.warning(f"Skipping cycle: {e}")

                if self._context.cancelled:
                    break
                self._cycles_run += 1
                if limit and self._cycles_run >= limit:
                    break

                self._state = SchedulerState.WAITING
                if self._sleep(self.waiting_duration()):
                    break
        finally:
            self._state = SchedulerState.STOPPED

    def start(self) -> None:
        """Start running cycles in a background thread."""
        if self.is_running:
            return

        self.error = None
        self._context.stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_in_thread,
            daemon=True,
            name="Scheduler",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the scheduler.

        Args:
            timeout: How long to wait for the thread to stop (seconds).
        """
        self._context.cancel()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run_in_thread(self) -> None:
        try:
            self.run()
        except CpuLoggerError as e:
            # Picked up by whoever owns the thread
            self.error = e
