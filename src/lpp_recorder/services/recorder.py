"""Scheduling loop: capture a snapshot pair, write it, wait for the next interval."""

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from enum import Enum
from pathlib import Path

from lpp_recorder.data.storage import StorageError, StorageRoot
from lpp_recorder.services.reconciler import SnapshotCycleError, SnapshotReconciler

logger = logging.getLogger(__name__)


class RunMode(str, Enum):
    ONCE = "once"
    PERPETUAL = "perpetual"


class CancellationToken:
    """Thread-safe cancellation flag, settable from signal handlers."""

    def __init__(self):
        self._event = threading.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(
        self,
        timeout: float,
        poll_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> bool:
        """Sleep up to timeout seconds, returning early once cancelled.

        Returns:
            True if the token was cancelled.
        """
        remaining = timeout
        while remaining > 0 and not self.is_cancelled:
            step = min(poll_interval, remaining)
            await sleep(step)
            remaining -= step
        return self.is_cancelled


class SnapshotRecorder:
    """Runs reconciliation cycles and persists their snapshots.

    Usage:
        recorder = SnapshotRecorder(reconciler, StorageRoot(path), timedelta(days=1), token)
        await recorder.run(RunMode.PERPETUAL)
    """

    def __init__(
        self,
        reconciler: SnapshotReconciler,
        storage: StorageRoot,
        interval: timedelta,
        cancellation_token: CancellationToken,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._reconciler = reconciler
        self._storage = storage
        self._interval = interval
        self._token = cancellation_token
        self._sleep = sleep
        self._clock = clock

    async def record_snapshot(self) -> tuple[Path, Path]:
        """Capture one snapshot pair and write both files.

        Returns:
            Paths of the stations and routes snapshot files.

        Raises:
            SnapshotCycleError: Reconciliation failed; nothing was written.
            StorageError: A snapshot file could not be written. A stations file
                written before the routes file failed is removed again.
        """
        pair = await self._reconciler.capture()

        stations_path = self._storage.stations().save(pair.stations, pair.captured_at)
        try:
            routes_path = self._storage.routes().save(pair.routes, pair.captured_at)
        except StorageError:
            self._discard_unpaired(stations_path)
            raise

        logger.info(
            f"Saved snapshot of {len(pair.stations.station_details)} stations to {stations_path} "
            f"and {len(pair.routes.routes)} routes to {routes_path}."
        )
        return stations_path, routes_path

    @staticmethod
    def _discard_unpaired(stations_path: Path) -> None:
        """Remove a stations snapshot whose routes partner failed to save."""
        try:
            stations_path.unlink()
        except OSError as e:
            logger.error(
                f"Routes snapshot failed; leaving unpaired stations snapshot {stations_path}: {e}"
            )
            return
        logger.error(f"Routes snapshot failed; removed unpaired stations snapshot {stations_path}.")

    async def run(self, run_mode: RunMode) -> None:
        """Record snapshots until cancelled (or once).

        Raises:
            SnapshotCycleError, StorageError: Only in ONCE mode; in PERPETUAL
                mode failures are logged and the next cycle is scheduled.
        """
        interval_seconds = self._interval.total_seconds()

        while not self._token.is_cancelled:
            started_at = self._clock()

            try:
                await self.record_snapshot()
            except (SnapshotCycleError, StorageError) as e:
                if run_mode is RunMode.ONCE:
                    raise
                logger.error(
                    f"Failed to record snapshot, will try again next cycle: {e} ({e.__cause__})"
                )

            if run_mode is RunMode.ONCE:
                return

            elapsed = self._clock() - started_at
            wait_seconds = max(0.0, interval_seconds - elapsed)
            logger.info(f"Sleeping {wait_seconds:.0f}s until the next snapshot.")
            await self._token.wait(wait_seconds, sleep=self._sleep)

        logger.info("Snapshot loop has been cancelled, exiting.")
