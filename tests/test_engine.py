"""Tests for aggregation, top-N selection and threshold evaluation."""

import pytest

from conftest import make_snapshot
from cpulogger.engine import aggregate, evaluate, select_top
from cpulogger.models import ProcessUsage, ThresholdConfig, UsageReport


class TestAggregateTotal:
    """Tests for total usage computed by aggregate()."""

    def test_total_usage_from_zero(self):
        """Test 30 busy and 70 idle seconds give 30%."""
        start = make_snapshot(timestamp=0.0, busy=0, idle=0)
        end = make_snapshot(timestamp=1.0, busy=30, idle=70)

        assert aggregate(start, end).total_usage_percent == 30.0

    def test_total_usage_is_scale_invariant(self):
        """Test identical deltas give identical usage regardless of counter magnitude."""
        small = aggregate(
            make_snapshot(timestamp=0.0, busy=0, idle=0),
            make_snapshot(timestamp=1.0, busy=30, idle=70),
        )
        large = aggregate(
            make_snapshot(timestamp=0.0, busy=1000, idle=2000),
            make_snapshot(timestamp=1.0, busy=1030, idle=2070),
        )

        assert small.total_usage_percent == large.total_usage_percent == 30.0

    def test_no_elapsed_cpu_time_reports_zero(self):
        """Test both deltas zero reports 0 instead of dividing by zero."""
        start = make_snapshot(timestamp=0.0, busy=500, idle=500)
        end = make_snapshot(timestamp=1.0, busy=500, idle=500)

        assert aggregate(start, end).total_usage_percent == 0.0

    def test_counter_going_backwards_is_clamped(self):
        """Test a shrinking busy counter never yields negative usage."""
        start = make_snapshot(timestamp=0.0, busy=100, idle=0)
        end = make_snapshot(timestamp=1.0, busy=50, idle=100)

        assert aggregate(start, end).total_usage_percent == 0.0

    def test_window_bounds_come_from_snapshots(self):
        """Test the report window matches the snapshot capture times."""
        start = make_snapshot(timestamp=10.0)
        end = make_snapshot(timestamp=11.5)

        report = aggregate(start, end)

        assert report.window_start == start.captured_at
        assert report.window_end == end.captured_at
        assert report.elapsed_seconds == 1.5


class TestAggregateProcesses:
    """Tests for per-process usage computed by aggregate()."""

    def test_usage_uses_actual_elapsed_time(self):
        """Test usage is divided by measured elapsed time, not a nominal window."""
        start = make_snapshot(timestamp=0.0, processes={1: ("a", 0.0)})
        end = make_snapshot(timestamp=2.0, processes={1: ("a", 1.0)})

        report = aggregate(start, end)

        assert report.per_process_usage == (ProcessUsage(pid=1, display_name="a", usage_percent=50.0),)

    def test_usage_is_normalized_by_cpu_count(self):
        """Test a process using one full core of four reports 25%."""
        start = make_snapshot(timestamp=0.0, processes={1: ("a", 10.0)}, cpu_count=4)
        end = make_snapshot(timestamp=1.0, processes={1: ("a", 11.0)}, cpu_count=4)

        assert aggregate(start, end).per_process_usage[0].usage_percent == 25.0

    def test_usage_is_not_clamped_above_100(self):
        """Test usage above 100% is reported as measured."""
        start = make_snapshot(timestamp=0.0, processes={1: ("a", 0.0)})
        end = make_snapshot(timestamp=1.0, processes={1: ("a", 1.5)})

        assert aggregate(start, end).per_process_usage[0].usage_percent == 150.0

    def test_exited_process_is_excluded(self):
        """Test a process only present in the start snapshot is left out."""
        start = make_snapshot(timestamp=0.0, processes={1: ("gone", 5.0), 2: ("alive", 1.0)})
        end = make_snapshot(timestamp=1.0, processes={2: ("alive", 1.2)})

        report = aggregate(start, end)

        assert [usage.pid for usage in report.per_process_usage] == [2]
        assert all(usage.usage_percent >= 0 for usage in report.per_process_usage)

    def test_new_process_is_excluded(self):
        """Test a process that started mid-window has no baseline and is left out."""
        start = make_snapshot(timestamp=0.0, processes={})
        end = make_snapshot(timestamp=1.0, processes={7: ("new", 0.4)})

        assert aggregate(start, end).per_process_usage == ()

    def test_reused_pid_counts_as_zero(self):
        """Test a counter reset caused by PID reuse gives 0, never negative."""
        start = make_snapshot(timestamp=0.0, processes={5: ("old", 100.0)})
        end = make_snapshot(timestamp=1.0, processes={5: ("new", 0.2)})

        usage = aggregate(start, end).per_process_usage[0]

        assert usage.usage_percent == 0.0
        assert usage.display_name == "new"

    def test_join_is_independent_of_process_order(self):
        """Test processes are matched by PID, not by position."""
        start = make_snapshot(timestamp=0.0, processes={1: ("a", 0.0), 2: ("b", 0.0)})
        end = make_snapshot(timestamp=1.0, processes={2: ("b", 0.3), 1: ("a", 0.1)})

        usages = {usage.pid: usage.usage_percent for usage in aggregate(start, end).per_process_usage}

        assert usages[1] == pytest.approx(10.0)
        assert usages[2] == pytest.approx(30.0)

    def test_zero_elapsed_time_reports_zero(self):
        """Test snapshots taken at the same instant yield 0 usage."""
        start = make_snapshot(timestamp=3.0, processes={1: ("a", 0.0)})
        end = make_snapshot(timestamp=3.0, processes={1: ("a", 1.0)})

        assert aggregate(start, end).per_process_usage[0].usage_percent == 0.0

    def test_processes_are_sorted(self):
        """Test per-process usage is ordered by usage, then PID."""
        start = make_snapshot(timestamp=0.0, processes={3: ("c", 0.0), 2: ("b", 0.0), 1: ("a", 0.0)})
        end = make_snapshot(timestamp=1.0, processes={3: ("c", 0.1), 2: ("b", 0.4), 1: ("a", 0.4)})

        assert [usage.pid for usage in aggregate(start, end).per_process_usage] == [1, 2, 3]

    def test_aggregate_is_idempotent(self):
        """Test aggregating the same snapshots twice gives identical reports."""
        start = make_snapshot(timestamp=0.0, busy=12.5, idle=80.1, processes={1: ("a", 0.3), 2: ("b", 1.1)})
        end = make_snapshot(timestamp=1.01, busy=13.7, idle=80.9, processes={1: ("a", 0.9), 2: ("b", 1.2)})

        assert aggregate(start, end) == aggregate(start, end)


class TestSelectTop:
    """Tests for select_top()."""

    def test_ties_broken_by_ascending_pid(self):
        """Test equal usage is ordered by PID."""
        usages = [
            ProcessUsage(pid=2, display_name="b", usage_percent=40.0),
            ProcessUsage(pid=1, display_name="a", usage_percent=40.0),
            ProcessUsage(pid=3, display_name="c", usage_percent=10.0),
        ]

        result = select_top(usages, 3)

        assert [(u.pid, u.usage_percent) for u in result] == [(1, 40.0), (2, 40.0), (3, 10.0)]

    def test_limits_to_n(self):
        """Test only the n busiest processes are returned."""
        usages = [ProcessUsage(pid=pid, display_name=str(pid), usage_percent=float(pid)) for pid in range(10)]

        result = select_top(usages, 3)

        assert [u.pid for u in result] == [9, 8, 7]

    def test_n_larger_than_input(self):
        """Test asking for more processes than exist returns all of them."""
        usages = [ProcessUsage(pid=1, display_name="a", usage_percent=1.0)]

        assert len(select_top(usages, 5)) == 1

    def test_zero_returns_empty(self):
        """Test n=0 yields an empty sequence, not an error."""
        usages = [ProcessUsage(pid=1, display_name="a", usage_percent=1.0)]

        assert select_top(usages, 0) == ()

    def test_negative_n_rejected(self):
        """Test a negative n raises ValueError."""
        with pytest.raises(ValueError):
            select_top([], -1)

    def test_order_is_reproducible(self):
        """Test any input order produces the same ranking."""
        usages = [
            ProcessUsage(pid=4, display_name="d", usage_percent=5.0),
            ProcessUsage(pid=2, display_name="b", usage_percent=5.0),
            ProcessUsage(pid=9, display_name="i", usage_percent=7.0),
        ]

        assert select_top(usages, 3) == select_top(list(reversed(usages)), 3)


def _report(total: float, *usages: ProcessUsage) -> UsageReport:
    start = make_snapshot()
    return UsageReport(
        window_start=start.captured_at,
        window_end=start.captured_at,
        elapsed_seconds=1.0,
        total_usage_percent=total,
        per_process_usage=tuple(usages),
    )


class TestEvaluate:
    """Tests for evaluate()."""

    def test_total_and_process_exceeded_together(self):
        """Test both conditions are reported when both thresholds are crossed."""
        config = ThresholdConfig(total_threshold_percent=30, process_threshold_percent=15)
        report = _report(35.0, ProcessUsage(pid=10, display_name="hog", usage_percent=20.0))

        decision = evaluate(report, config)

        assert decision.total_exceeded
        assert decision.exceeded_pids == {10}

    def test_threshold_is_inclusive(self):
        """Test usage equal to the threshold fires."""
        config = ThresholdConfig(total_threshold_percent=30, process_threshold_percent=15)
        report = _report(30.0, ProcessUsage(pid=1, display_name="a", usage_percent=15.0))

        decision = evaluate(report, config)

        assert decision.total_exceeded
        assert decision.exceeded_pids == {1}

    def test_below_thresholds_no_event(self):
        """Test nothing fires below both thresholds."""
        config = ThresholdConfig(total_threshold_percent=30, process_threshold_percent=15)
        report = _report(29.9, ProcessUsage(pid=1, display_name="a", usage_percent=14.9))

        assert not evaluate(report, config).fired

    def test_process_exceeded_without_total(self):
        """Test a single process fires independently of total usage."""
        config = ThresholdConfig(total_threshold_percent=90, process_threshold_percent=15)
        report = _report(
            20.0,
            ProcessUsage(pid=1, display_name="a", usage_percent=18.0),
            ProcessUsage(pid=2, display_name="b", usage_percent=2.0),
        )

        decision = evaluate(report, config)

        assert not decision.total_exceeded
        assert decision.exceeded_pids == {1}
