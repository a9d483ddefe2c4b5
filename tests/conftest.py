"""Shared fixtures and fakes for the cpulogger test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from cpulogger.config import RunConfig
from cpulogger.context import RunContext
from cpulogger.errors import SnapshotError
from cpulogger.models import CounterSnapshot, ProcessCounters
from cpulogger.monitor import Scheduler
from cpulogger.report import Sink

EPOCH = datetime(2024, 3, 8, 21, 19, 47, tzinfo=timezone.utc)


def make_snapshot(
    timestamp: float = 0.0,
    busy: float = 0.0,
    idle: float = 0.0,
    processes: dict[int, tuple[str, float]] | None = None,
    cpu_count: int = 1,
) -> CounterSnapshot:
    """Build a snapshot from ``{pid: (name, cpu_seconds)}``."""
    per_process = {
        pid: ProcessCounters(pid=pid, display_name=name, cpu_time_consumed=cpu)
        for pid, (name, cpu) in (processes or {}).items()
    }
    return CounterSnapshot(
        timestamp=timestamp,
        captured_at=EPOCH + timedelta(seconds=timestamp),
        total_busy_time=busy,
        total_idle_time=idle,
        per_process=per_process,
        cpu_count=cpu_count,
    )


class FakeProvider:
    """Returns prepared snapshots (or raises prepared errors) in order."""

    def __init__(self, snapshots: list) -> None:
        self._snapshots = list(snapshots)
        self.calls = 0

    def capture(self) -> CounterSnapshot:
        self.calls += 1
        if not self._snapshots:
            raise SnapshotError("no more snapshots")
        item = self._snapshots.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingSink(Sink):
    """Keeps everything written to it."""

    def __init__(self, name: str = "recording", events_only: bool = False) -> None:
        self.name = name
        self.events_only = events_only
        self.emitted: list[tuple] = []
        self.messages: list[str] = []

    def emit(self, text, report, decision) -> None:
        self.emitted.append((text, report, decision))

    def announce(self, message: str) -> None:
        self.messages.append(message)

    def write(self, text: str) -> None:
        self.messages.append(text)


class FailingSink(Sink):
    """Raises an OSError on every write."""

    def __init__(self, name: str = "failing", events_only: bool = False) -> None:
        self.name = name
        self.events_only = events_only

    def write(self, text: str) -> None:
        raise OSError("disk full")


class RecordingScheduler(Scheduler):
    """Scheduler whose waits return immediately and are recorded."""

    def __init__(self, *args, cancel_after_sleeps: int | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.sleeps: list[float] = []
        self._cancel_after_sleeps = cancel_after_sleeps

    def _sleep(self, seconds: float) -> bool:
        self.sleeps.append(seconds)
        if self._cancel_after_sleeps is not None and len(self.sleeps) >= self._cancel_after_sleeps:
            self._context.cancel()
        return self._context.cancelled


@pytest.fixture
def cli_config() -> RunConfig:
    return RunConfig(cli=True)


def make_context(config: RunConfig, *sinks: Sink) -> RunContext:
    return RunContext(config, list(sinks))
