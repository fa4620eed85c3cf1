"""Append-only JSON snapshot files.

Layout under the recording root:

    stations/station-details_2024-01-31_06-00-00.123+UTC.json
    routes/route-details_2024-01-31_06-00-00.123+UTC.json
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)

STATIONS_DIRECTORY_NAME = "stations"
ROUTES_DIRECTORY_NAME = "routes"
STATIONS_FILE_PREFIX = "station-details"
ROUTES_FILE_PREFIX = "route-details"


class StorageError(Exception):
    """Raised when a snapshot file cannot be written."""


def ensure_directory_exists(directory: Path) -> None:
    """Create directory (and its parents) unless it already exists.

    Raises:
        StorageError: If the path exists but is not a directory, or creation fails.
    """
    if directory.exists() and not directory.is_dir():
        raise StorageError(f"{directory} exists, but is not a directory.")
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Failed to create directory {directory}: {e}") from e


def format_file_timestamp(captured_at: datetime) -> str:
    """Format as 2024-01-31_06-00-00.123+UTC (millisecond precision)."""
    utc = captured_at.astimezone(timezone.utc)
    return f"{utc:%Y-%m-%d_%H-%M-%S}.{utc.microsecond // 1000:03d}+UTC"


class SnapshotStorage:
    """Writes one kind of snapshot into its own directory."""

    def __init__(self, directory: Path, file_prefix: str):
        self.directory = directory
        self.file_prefix = file_prefix

    def generate_json_file_path(self, captured_at: datetime) -> Path:
        return self.directory / f"{self.file_prefix}_{format_file_timestamp(captured_at)}.json"

    def save(self, snapshot: BaseModel, captured_at: datetime) -> Path:
        """Serialize snapshot to a new JSON file.

        Returns:
            Path of the written file.

        Raises:
            StorageError: If the file already exists or cannot be written.
        """
        ensure_directory_exists(self.directory)
        path = self.generate_json_file_path(captured_at)

        try:
            with path.open("x", encoding="utf-8") as f:
                f.write(snapshot.model_dump_json())
        except FileExistsError as e:
            raise StorageError(f"Snapshot file {path} already exists.") from e
        except OSError as e:
            raise StorageError(f"Failed to write snapshot file {path}: {e}") from e

        logger.debug(f"Saved snapshot to {path}")
        return path


class StorageRoot:
    """Recording directory holding the stations/ and routes/ snapshot stores."""

    def __init__(self, root: Path):
        self.root = root

    def stations(self) -> SnapshotStorage:
        return SnapshotStorage(self.root / STATIONS_DIRECTORY_NAME, STATIONS_FILE_PREFIX)

    def routes(self) -> SnapshotStorage:
        return SnapshotStorage(self.root / ROUTES_DIRECTORY_NAME, ROUTES_FILE_PREFIX)
