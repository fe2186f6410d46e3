"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from imgcache.media.downloader import DEFAULT_USER_AGENT
from imgcache.models.job import MIN_PERIODIC_INTERVAL

MIN_CLEANUP_INTERVAL_MINUTES = int(MIN_PERIODIC_INTERVAL.total_seconds() // 60)


class CacheConfig(BaseModel):
    """A validated configuration model for the application."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Cache Settings
    cache_dir: str = ""
    ttl_minutes: float = 5.0
    cleanup_interval_minutes: float = float(MIN_CLEANUP_INTERVAL_MINUTES)

    # Fetch Settings
    max_workers: int = 8
    decode_workers: int = 2
    download_attempts: int = 3
    user_agent: str = DEFAULT_USER_AGENT

    # Job Settings
    poll_seconds: float = 30.0
    json_logs: bool = False

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    @field_validator("ttl_minutes")
    @classmethod
    def validate_ttl(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("TTL must be a positive number of minutes.")
        return v

    @field_validator("cleanup_interval_minutes")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Ensures the periodic cleanup respects the minimum interval."""
        if v < MIN_CLEANUP_INTERVAL_MINUTES:
            raise ValueError(
                "Cleanup interval cannot be smaller than "
                f"{MIN_CLEANUP_INTERVAL_MINUTES} minutes."
            )
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 32:
            raise ValueError("Max workers must be between 1 and 32.")
        return v

    @field_validator("decode_workers")
    @classmethod
    def validate_decode_workers(cls, v: int) -> int:
        if v < 1 or v > 16:
            raise ValueError("Decode workers must be between 1 and 16.")
        return v

    @field_validator("download_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("Download attempts must be between 1 and 10.")
        return v

    @field_validator("user_agent")
    @classmethod
    def validate_user_agent(cls, v: str) -> str:
        return v or DEFAULT_USER_AGENT

    @field_validator("poll_seconds")
    @classmethod
    def validate_poll(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Poll interval must be positive.")
        return v

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.ttl_minutes)

    @property
    def cleanup_interval(self) -> timedelta:
        return timedelta(minutes=self.cleanup_interval_minutes)

    @property
    def cache_path(self) -> Path:
        """The cache directory, defaulting to 'images' under the config directory."""
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return Path(self.config_path) / "images"

    @property
    def job_db_path(self) -> Path:
        return Path(self.config_path) / "jobs.sqlite"

    @property
    def log_dir(self) -> Path:
        return Path(self.config_path) / "logs"

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
