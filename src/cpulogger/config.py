"""Run configuration: command line, optional TOML file and validation."""

import argparse
import math
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from cpulogger.errors import ConfigError
from cpulogger.models import ThresholdConfig

CONFIG_TABLE = "cpulogger"


@dataclass(slots=True, frozen=True)
class RunConfig:
    """Everything needed to start a monitoring run."""

    time_between_measurements: float = 5.0
    measurement_time: float = 1.0
    total_log_threshold: float = 30.0
    process_log_threshold: float = 15.0
    number_of_processes_to_show: int = 5
    cli: bool = False
    log_file: Path | None = None
    tui: bool = False
    inclusive_interval: bool = False
    cycles: int = 0  # 0 runs until cancelled
    verbose: bool = False

    @property
    def thresholds(self) -> ThresholdConfig:
        """Threshold settings handed to the evaluator and reporter."""
        return ThresholdConfig(
            total_threshold_percent=self.total_log_threshold,
            process_threshold_percent=self.process_log_threshold,
            top_n=self.number_of_processes_to_show,
        )

    @property
    def interactive(self) -> bool:
        """True when every cycle is shown, not only threshold events."""
        return self.cli or self.tui


_NUMERIC_FIELDS = (
    "time_between_measurements",
    "measurement_time",
    "total_log_threshold",
    "process_log_threshold",
    "number_of_processes_to_show",
    "cycles",
)

_FLAG_FIELDS = ("cli", "tui", "inclusive_interval", "verbose")


def validate_config(config: RunConfig) -> RunConfig:
    """
    Reject configurations that cannot produce a sensible run.

    Returns:
        The same config, for chaining.

    Raises:
        ConfigError: With a message naming the offending option.
    """
    for name in _NUMERIC_FIELDS:
        value = getattr(config, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{name} must be a number, got {value!r}", field_name=name, value=value)
        if not math.isfinite(value):
            raise ConfigError(f"{name} must be finite, got {value}", field_name=name, value=value)
        if value < 0:
            raise ConfigError(f"{name} must be >= 0, got {value}", field_name=name, value=value)

    for name in ("number_of_processes_to_show", "cycles"):
        value = getattr(config, name)
        if not isinstance(value, int):
            raise ConfigError(f"{name} must be a whole number, got {value!r}", field_name=name, value=value)

    for name in _FLAG_FIELDS:
        value = getattr(config, name)
        if not isinstance(value, bool):
            raise ConfigError(f"{name} must be true or false, got {value!r}", field_name=name, value=value)

    if config.log_file is not None and not isinstance(config.log_file, Path):
        raise ConfigError(
            f"log_file must be a path, got {config.log_file!r}",
            field_name="log_file",
            value=config.log_file,
        )

    if config.inclusive_interval and config.measurement_time > config.time_between_measurements:
        raise ConfigError(
            "measurement_time must not exceed time_between_measurements when the interval "
            f"includes the measurement ({config.measurement_time} > {config.time_between_measurements})",
            field_name="measurement_time",
            value=config.measurement_time,
        )

    if config.number_of_processes_to_show == 0 and config.total_log_threshold <= 100:
        raise ConfigError(
            "number_of_processes_to_show is 0, so total usage events would list no processes; "
            "show at least one process or raise total_log_threshold above 100",
            field_name="number_of_processes_to_show",
            value=0,
        )

    if not config.interactive and config.log_file is None:
        raise ConfigError("Nothing to report to: enable --cli, --tui or set --log-file")

    return config


def load_config_file(path: Path) -> dict[str, Any]:
    """
    Read option defaults from the ``[cpulogger]`` table of a TOML file.

    Raises:
        ConfigError: If the file is missing, malformed or names unknown options.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}", field_name="config", value=str(path)) from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}", field_name="config", value=str(path)) from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}", field_name="config", value=str(path)) from e

    section = data.get(CONFIG_TABLE, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{CONFIG_TABLE}] in {path} must be a table", field_name="config")

    known = {f.name for f in fields(RunConfig)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigError(
            f"Unknown option(s) in {path}: {', '.join(unknown)}",
            field_name="config",
            value=unknown,
        )

    values = dict(section)
    log_file = values.get("log_file")
    if log_file is not None:
        if not isinstance(log_file, str):
            raise ConfigError(
                f"log_file in {path} must be a string, got {log_file!r}",
                field_name="log_file",
                value=log_file,
            )
        values["log_file"] = Path(log_file)
    return values


def build_parser() -> argparse.ArgumentParser:
    """Create the command line parser."""
    parser = argparse.ArgumentParser(
        prog="cpulogger",
        description="Simple utility to log high CPU usage.",
    )
    # Defaults are None so that values from --config survive unless overridden
    parser.add_argument(
        "-b",
        "--time-between-measurements",
        type=float,
        help="How long to wait between measurements in seconds (default: 5)",
    )
    parser.add_argument(
        "-m",
        "--measurement-time",
        type=float,
        help="How long to measure for in seconds; usage is averaged over this time (default: 1)",
    )
    parser.add_argument(
        "-t",
        "--total-log-threshold",
        type=float,
        help="Total CPU usage in percent at which to start logging (default: 30)",
    )
    parser.add_argument(
        "-p",
        "--process-log-threshold",
        type=float,
        help="Single process CPU usage in percent at which to start logging (default: 15)",
    )
    parser.add_argument(
        "-n",
        "--number-of-processes-to-show",
        type=int,
        help="Number of top processes to log on a total usage event and to show in the CLI (default: 5)",
    )
    parser.add_argument(
        "-c",
        "--cli",
        action="store_true",
        default=None,
        help="CLI mode: periodically write stats to stdout",
    )
    parser.add_argument(
        "-l",
        "--log-file",
        type=Path,
        help="Append threshold events to this file",
    )
    parser.add_argument(
        "--tui",
        action="store_true",
        default=None,
        help="Show stats in an interactive terminal display",
    )
    parser.add_argument(
        "--inclusive-interval",
        action="store_true",
        default=None,
        help="Treat --time-between-measurements as the full cycle period, including measuring",
    )
    parser.add_argument(
        "--cycles",
        type=int,
        help="Stop after this many measurement cycles (default: run until interrupted)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=f"TOML file with a [{CONFIG_TABLE}] table of option defaults",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=None,
        help="Enable debug logging",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> RunConfig:
    """
    Build and validate a RunConfig from the command line.

    Values come from, in increasing priority: built-in defaults, the
    ``--config`` file, and explicit command line flags.
    """
    args = build_parser().parse_args(argv)

    values: dict[str, Any] = {}
    if args.config is not None:
        values.update(load_config_file(args.config))
    for name, value in vars(args).items():
        if name != "config" and value is not None:
            values[name] = value

    try:
        config = replace(RunConfig(), **values)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
    return validate_config(config)
