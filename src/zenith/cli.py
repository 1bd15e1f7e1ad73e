"""Command-line entry point for zenith."""

import argparse
import sys
from pathlib import Path

import structlog

from zenith.app import ZenithApp
from zenith.config import MIN_REFRESH_RATE_MS, Config, load_config
from zenith.errors import ConfigError, LockHeld, PersistenceFault
from zenith.logs import configure_logging
from zenith.loop import ExitReason
from zenith.store import PersistentHistoryStore

__version__ = "0.1.0"

EXIT_OK = 0
EXIT_LOCK_HELD = 1
EXIT_CONFIG = 2
EXIT_TERMINAL = 3

DESCRIPTION = """\
Zenith, sort of like top but with histograms.
Up/down arrow keys move around the process table. Return (enter) will focus on a process.
Tab switches the active section. Active sections can be expanded (e) and minimized (m).
Using this you can create the layout you want."""

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    defaults = Config()
    parser = argparse.ArgumentParser(
        prog="zenith",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-r",
        "--refresh-rate",
        type=int,
        metavar="INT",
        help=f"Refresh rate in milliseconds, at least {MIN_REFRESH_RATE_MS} (default {defaults.refresh_rate_ms}).",
    )
    for short, name, help_text, default in (
        ("-c", "cpu-height", "Height of CPU/Memory visualization.", defaults.cpu_height),
        ("-n", "net-height", "Height of Network visualization.", defaults.net_height),
        ("-d", "disk-height", "Height of Disk visualization.", defaults.disk_height),
        ("-p", "process-height", "Min Height of Process Table.", defaults.process_height),
        ("-s", "sensor-height", "Height of Sensor visualization.", defaults.sensor_height),
    ):
        parser.add_argument(short, f"--{name}", type=int, metavar="INT", help=f"{help_text} (default {default})")
    parser.add_argument(
        "--disable-history",
        action="store_true",
        help="Disables history when flag is present.",
    )
    parser.add_argument("--db", type=Path, metavar="PATH", help=f"History directory (default {defaults.db_path}).")
    parser.add_argument(
        "--retention-hours",
        type=float,
        metavar="HOURS",
        help=f"How much history to keep on disk (default {defaults.retention_hours:g}).",
    )
    parser.add_argument("--config", type=Path, metavar="PATH", help="TOML config file.")
    parser.add_argument("--log-level", metavar="LEVEL", help="debug, info, warning, error or critical.")
    parser.add_argument("--log-file", type=Path, metavar="PATH", help="Write logs here instead of stderr.")
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    """Merge parsed flags over the config file and defaults."""
    return load_config(
        args.config,
        overrides={
            "refresh_rate_ms": args.refresh_rate,
            "cpu_height": args.cpu_height,
            "net_height": args.net_height,
            "disk_height": args.disk_height,
            "process_height": args.process_height,
            "sensor_height": args.sensor_height,
            "history_enabled": False if args.disable_history else None,
            "db_path": args.db,
            "retention_hours": args.retention_hours,
            "log_level": args.log_level,
            "log_file": args.log_file,
        },
    )


def open_store(config: Config) -> tuple[PersistentHistoryStore | None, str | None]:
    """
    Open the history store if history is enabled.

    Returns the store (or None) and a warning for the UI when the store could
    not be opened for a reason other than lock contention.

    Raises:
        LockHeld: Another instance owns the store.
    """
    if not config.history_enabled:
        return None, None
    try:
        store = PersistentHistoryStore.open(config.db_path, retention=config.retention_hours * 3600.0)
    except PersistenceFault as fault:
        log.warning("history_unavailable", error=str(fault))
        return None, f"History disabled: {fault}"
    return store, None


def main(argv: list[str] | None = None) -> int:
    """Entry point for zenith application."""
    args = build_parser().parse_args(argv)
    try:
        config = config_from_args(args)
    except ConfigError as e:
        for problem in e.problems:
            print(f"zenith: {problem}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(config.log_level, config.log_file)
    log.info("zenith_starting", version=__version__, config=str(config))

    try:
        store, warning = open_store(config)
    except LockHeld as e:
        print(e, file=sys.stderr)
        return EXIT_LOCK_HELD

    try:
        app = ZenithApp(config, store, startup_warning=warning)
        status = app.run()
    except Exception as exc:
        log.exception("terminal_failed")
        print(f"zenith: could not run the terminal UI: {exc}", file=sys.stderr)
        return EXIT_TERMINAL
    finally:
        if store is not None:
            store.close()

    if app.return_code:
        return EXIT_TERMINAL
    if status is not None and status.reason is ExitReason.RENDER_FAULT:
        print(f"zenith: {status.detail}", file=sys.stderr)
        return EXIT_TERMINAL
    log.info("zenith_stopped", ticks=status.ticks if status else 0)
    return EXIT_OK
