"""Data models for cpulogger."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True, frozen=True)
class ProcessCounters:
    """Immutable CPU-time counters of a single process."""

    pid: int
    display_name: str
    cpu_time_consumed: float  # user + system seconds


@dataclass(slots=True, frozen=True)
class CounterSnapshot:
    """Point-in-time capture of system and per-process CPU counters."""

    timestamp: float  # Monotonic clock, seconds
    captured_at: datetime
    total_busy_time: float
    total_idle_time: float
    per_process: Mapping[int, ProcessCounters] = field(default_factory=dict)
    cpu_count: int = 1


@dataclass(slots=True, frozen=True)
class ProcessUsage:
    """CPU usage of one process over a measurement window."""

    pid: int
    display_name: str
    usage_percent: float


@dataclass(slots=True, frozen=True)
class UsageReport:
    """Total and per-process usage for one sampling cycle."""

    window_start: datetime
    window_end: datetime
    elapsed_seconds: float
    total_usage_percent: float
    per_process_usage: tuple[ProcessUsage, ...] = ()


@dataclass(slots=True, frozen=True)
class ThresholdConfig:
    """Thresholds deciding when a cycle becomes a reporting event."""

    total_threshold_percent: float = 30.0
    process_threshold_percent: float = 15.0
    top_n: int = 5


@dataclass(slots=True, frozen=True)
class Decision:
    """Outcome of threshold evaluation.

    Both sub-conditions are independent and may be true at the same time.
    """

    total_exceeded: bool = False
    exceeded_pids: frozenset[int] = frozenset()

    @property
    def fired(self) -> bool:
        """True when any threshold was crossed."""
        return self.total_exceeded or bool(self.exceeded_pids)
