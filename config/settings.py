"""Application settings and configuration."""

from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables prefixed with SCHEMA_MIGRATIONS_."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEMA_MIGRATIONS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    log_dir: Path = Field(default=Path("./logs"))

    # Cluster connection
    hosts: List[str] = Field(default_factory=lambda: ["http://localhost:9200"])
    username: Optional[str] = Field(default=None)
    password: Optional[str] = Field(default=None)
    verify_certs: bool = Field(default=True)
    request_timeout_seconds: float = Field(default=3600.0)

    # Reserved system indices
    migration_index: str = Field(default=".schema-migrations")
    lock_index: str = Field(default=".schema-migrations-locks")

    # Migration behaviour
    cutover_alias: str = Field(default="current")
    default_timeout: str = Field(default="1h")
    lock_ttl_seconds: int = Field(default=7200)  # minimum; long timeouts extend the lease
    history_limit: int = Field(default=100)

    @field_validator("migration_index", "lock_index")
    @classmethod
    def validate_system_index(cls, v: str) -> str:
        """System indices are dot-prefixed so they never collide with user indices."""
        if not v.startswith("."):
            raise ValueError(f"System index name must start with '.', got {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    def __init__(self, **kwargs):
        """Initialize settings."""
        super().__init__(**kwargs)

        if self.migration_index == self.lock_index:
            raise ValueError(
                f"migration_index and lock_index must differ, both are {self.migration_index!r}"
            )

    def create_directories(self):
        """Create the log directory. Should be called at application startup."""
        if self.log_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
