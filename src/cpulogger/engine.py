"""Usage aggregation, top-N selection and threshold evaluation.

Everything in this module is a pure function of its arguments.
"""

from collections.abc import Iterable

from cpulogger.models import (
    CounterSnapshot,
    Decision,
    ProcessUsage,
    ThresholdConfig,
    UsageReport,
)


def _ranking_key(usage: ProcessUsage) -> tuple[float, int]:
    return (-usage.usage_percent, usage.pid)


def aggregate(start: CounterSnapshot, end: CounterSnapshot) -> UsageReport:
    """
    Compute total and per-process CPU usage between two snapshots.

    Total usage is the busy share of all CPU time that elapsed between the
    snapshots. Per-process usage is CPU time consumed over the actual elapsed
    wall time, divided by the logical CPU count so that both figures share the
    same scale (100% means every core was busy).

    Processes are joined by PID. A PID missing from either snapshot is left
    out of the report, and a shrinking counter (PID reuse) counts as zero.
    """
    busy_delta = max(0.0, end.total_busy_time - start.total_busy_time)
    idle_delta = max(0.0, end.total_idle_time - start.total_idle_time)
    all_delta = busy_delta + idle_delta
    total_usage = 100.0 * busy_delta / all_delta if all_delta > 0 else 0.0

    elapsed = end.timestamp - start.timestamp
    cpu_count = max(1, end.cpu_count)

    usages: list[ProcessUsage] = []
    for pid, end_counters in end.per_process.items():
        start_counters = start.per_process.get(pid)
        if start_counters is None:
            # Started during the window, no baseline
            continue

        cpu_delta = max(0.0, end_counters.cpu_time_consumed - start_counters.cpu_time_consumed)
        if elapsed > 0:
            usage_percent = 100.0 * cpu_delta / elapsed / cpu_count
        else:
            usage_percent = 0.0

        usages.append(
            ProcessUsage(
                pid=pid,
                display_name=end_counters.display_name,
                usage_percent=usage_percent,
            )
        )

    return UsageReport(
        window_start=start.captured_at,
        window_end=end.captured_at,
        elapsed_seconds=max(0.0, elapsed),
        total_usage_percent=total_usage,
        per_process_usage=tuple(sorted(usages, key=_ranking_key)),
    )


def select_top(per_process_usage: Iterable[ProcessUsage], n: int) -> tuple[ProcessUsage, ...]:
    """Return the ``n`` busiest processes, highest usage first, ties by PID."""
    if n < 0:
        raise ValueError(f"n must be non-negative, got {n}")
    if n == 0:
        return ()
    return tuple(sorted(per_process_usage, key=_ranking_key)[:n])


def evaluate(report: UsageReport, config: ThresholdConfig) -> Decision:
    """Check the report against the total and per-process thresholds."""
    total_exceeded = report.total_usage_percent >= config.total_threshold_percent
    exceeded_pids = frozenset(
        usage.pid
        for usage in report.per_process_usage
        if usage.usage_percent >= config.process_threshold_percent
    )
    return Decision(total_exceeded=total_exceeded, exceeded_pids=exceeded_pids)
