import logging
from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from lpp_recorder import __version__
from lpp_recorder.models.lpp import TimetableFetchMode
from lpp_recorder.services.retry import RetryPolicy

DEFAULT_CONFIGURATION_FILE_PATH = Path("data") / "configuration.toml"


class ConfigurationError(Exception):
    """Raised when the configuration file is missing or invalid."""


def _validate_level(value: str) -> str:
    level = value.upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"unknown logging level: {value!r}")
    return level


class LoggingConfig(BaseModel):
    """Console and log file output."""

    console_output_level: str = "INFO"
    log_file_output_level: str = "DEBUG"
    log_file_output_directory: Path | None = Path("data") / "logs"

    @field_validator("console_output_level", "log_file_output_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        return _validate_level(value)


class LppApiConfig(BaseModel):
    """LPP API access and how its HTTP errors are retried."""

    base_api_url: str = "https://data.lpp.si/api/"
    user_agent: str = f"lpp-recorder/{__version__}"
    timeout_seconds: float = Field(default=30.0, gt=0)

    # 4xx responses other than 429 are retried with a shorter budget,
    # or not at all when marked permanent.
    client_errors_are_permanent: bool = False
    client_error_max_elapsed_seconds: float = Field(default=30.0, ge=0)

    @field_validator("base_api_url")
    @classmethod
    def _trailing_slash(cls, value: str) -> str:
        # Relative endpoint paths are joined onto this URL.
        return value if value.endswith("/") else value + "/"


class RecordingConfig(BaseModel):
    """What to capture, how often, and where to store it."""

    snapshot_interval: timedelta = timedelta(days=1)
    recording_storage_directory_path: Path = Path("data") / "recordings"
    timetable: TimetableFetchMode = TimetableFetchMode()
    fetch_route_shapes: bool = False


class RecorderConfig(BaseSettings):
    """Configuration for the snapshot recorder.

    Loads from a TOML file; LPP_RECORDER_* environment variables (nested with
    "__", e.g. LPP_RECORDER_API__USER_AGENT) take precedence.
    """

    model_config = SettingsConfigDict(
        env_prefix="LPP_RECORDER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    logging: LoggingConfig = LoggingConfig()
    api: LppApiConfig = LppApiConfig()
    recording: RecordingConfig = RecordingConfig()
    retry: RetryPolicy = RetryPolicy()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, TomlConfigSettingsSource(settings_cls))


def load_config(config_file_path: Path | None = None) -> RecorderConfig:
    """Load configuration from a TOML file.

    Args:
        config_file_path: Path to the file; defaults to ./data/configuration.toml.

    Returns:
        The resolved RecorderConfig.

    Raises:
        ConfigurationError: If the file does not exist or fails validation.
    """
    path = config_file_path or DEFAULT_CONFIGURATION_FILE_PATH
    if not path.is_file():
        raise ConfigurationError(f"Could not find configuration file at {path}.")

    class FileBackedRecorderConfig(RecorderConfig):
        model_config = SettingsConfigDict(toml_file=path)

    try:
        return FileBackedRecorderConfig()
    except ValueError as e:
        raise ConfigurationError(f"Failed to load configuration from {path}: {e}") from e
