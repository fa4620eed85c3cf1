import argparse
import asyncio
import logging
import signal
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from lpp_recorder import __version__
from lpp_recorder.data.config import (
    DEFAULT_CONFIGURATION_FILE_PATH,
    ConfigurationError,
    LoggingConfig,
    RecorderConfig,
    load_config,
)
from lpp_recorder.data.lpp_client import LppClient
from lpp_recorder.data.storage import StorageError, StorageRoot
from lpp_recorder.services.reconciler import SnapshotCycleError, SnapshotReconciler
from lpp_recorder.services.recorder import CancellationToken, RunMode, SnapshotRecorder

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "recording-server.log"


def setup_logging(config: LoggingConfig, verbose: bool = False) -> None:
    """Configure console logging and, if a directory is set, a daily log file."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else config.console_output_level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if config.log_file_output_directory is not None:
        config.log_file_output_directory.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            config.log_file_output_directory / LOG_FILE_NAME,
            when="midnight",
            encoding="utf-8",
        )
        file_handler.setLevel(config.log_file_output_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def install_signal_handlers(token: CancellationToken) -> None:
    """Cancel the token on SIGINT/SIGTERM; the current cycle finishes first."""

    def handle(signum, frame) -> None:
        logger.warning(f"Received {signal.Signals(signum).name}, stopping after this cycle.")
        token.cancel()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


async def run_recorder(config: RecorderConfig, run_mode: RunMode, token: CancellationToken) -> None:
    """Open the API client and run the snapshot loop."""
    recording = config.recording

    async with LppClient(config.api) as client:
        reconciler = SnapshotReconciler(
            client,
            config.api,
            retry_policy=config.retry,
            timetable_mode=recording.timetable,
            fetch_route_shapes=recording.fetch_route_shapes,
        )
        recorder = SnapshotRecorder(
            reconciler,
            StorageRoot(recording.recording_storage_directory_path),
            recording.snapshot_interval,
            token,
        )
        await recorder.run(run_mode)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="lpp-recorder",
        description="Periodically record LPP station, route and timetable snapshots",
    )
    parser.add_argument(
        "--config-file-path",
        type=Path,
        default=DEFAULT_CONFIGURATION_FILE_PATH,
        help=f"TOML configuration file (default: {DEFAULT_CONFIGURATION_FILE_PATH})",
    )
    parser.add_argument(
        "--run-mode",
        choices=[mode.value for mode in RunMode],
        default=RunMode.PERPETUAL.value,
        help="Record a single snapshot, or keep recording at the configured interval",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose console logging",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args(argv)
    run_mode = RunMode(args.run_mode)

    try:
        config = load_config(args.config_file_path)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging, args.verbose)
    logger.info(f"lpp-recorder {__version__} starting in {run_mode.value} mode.")

    token = CancellationToken()
    install_signal_handlers(token)

    try:
        asyncio.run(run_recorder(config, run_mode, token))
    except (SnapshotCycleError, StorageError) as e:
        logger.error(f"Failed to record snapshot: {e} ({e.__cause__})")
        return 1

    return 0
