"""Exception types raised by cpulogger."""

from typing import Any


class CpuLoggerError(Exception):
    """Base class for all cpulogger errors."""


class ConfigError(CpuLoggerError):
    """Raised when the run configuration is invalid."""

    def __init__(self, message: str, field_name: str | None = None, value: Any = None) -> None:
        super().__init__(message)
        self.field_name = field_name
        self.value = value


class SnapshotError(CpuLoggerError):
    """
    Raised when CPU counters cannot be read.

    Transient failures only cost the current cycle; persistent ones
    (e.g. permission denied on the system counters) stop the scheduler.
    """

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class ReportError(CpuLoggerError):
    """Raised when a report could not be delivered to any sink."""

    def __init__(self, message: str, failures: dict[str, OSError] | None = None) -> None:
        super().__init__(message)
        self.failures = failures or {}
