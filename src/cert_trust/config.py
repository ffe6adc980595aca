"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup
  - Keep secrets out of source control

Architecture: Only AppSettings is a BaseSettings instance. Sub-settings are plain
BaseModel classes populated by AppSettings via env_nested_delimiter="__", so the env
var DATABASE__HOST maps to database.host, MONITOR__BASE_URL maps to
monitor.base_url, etc.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

DEFAULT_TRUST_BASE_URL = "https://raw.githubusercontent.com/cloudflare/cfssl_trust/master/"


class DatabaseSettings(BaseModel):
    """
    PostgreSQL connection configuration.

    Accepts either a full connection string via DATABASE__DSN or individual
    components (DATABASE__HOST, DATABASE__PORT, DATABASE__NAME,
    DATABASE__USERNAME, DATABASE__PASSWORD). The DSN takes priority when both
    are provided, and is always available via `get_dsn()` after construction.
    """

    dsn: SecretStr | None = Field(
        default=None,
        description="Full PostgreSQL connection string (overrides individual fields)",
    )

    host: str | None = Field(default=None, description="PostgreSQL host")
    port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port")
    name: str | None = Field(default=None, description="PostgreSQL database name")
    username: str | None = Field(default=None, description="PostgreSQL username")
    password: SecretStr | None = Field(default=None, description="PostgreSQL password")

    @model_validator(mode="after")
    def resolve_dsn(self) -> DatabaseSettings:
        """
        Ensure `dsn` is always populated.

        Builds it from the component fields when no DSN was given; raises
        ValueError at startup if neither is complete.
        """
        if self.dsn is not None:
            return self
        missing = [f for f, v in [
            ("DATABASE__HOST", self.host),
            ("DATABASE__NAME", self.name),
            ("DATABASE__USERNAME", self.username),
            ("DATABASE__PASSWORD", self.password),
        ] if not v]
        if missing:
            raise ValueError(
                "Set DATABASE__DSN or provide all of: "
                + ", ".join(missing)
            )
        dsn_value = (
            f"postgresql://{self.username}:{self.password.get_secret_value()}"  # type: ignore[union-attr]
            f"@{self.host}:{self.port}/{self.name}"
        )
        object.__setattr__(self, "dsn", SecretStr(dsn_value))
        return self

    def get_dsn(self) -> str:
        """Return the active database DSN as a plain string."""
        assert self.dsn is not None  # guaranteed by resolve_dsn validator
        return self.dsn.get_secret_value()


class StoreSettings(BaseModel):
    """Transaction behaviour of the trust store."""

    conflict_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for a unit of work that keeps hitting unique-constraint conflicts",
    )


class MonitorSettings(BaseModel):
    """
    Published-bundle monitor configuration.

    `cron` uses the standard 5-field format: minute hour day-of-month month day-of-week.
    Examples:
      "0 3 * * *"    — daily at 03:00 (default)
      "0 */6 * * *"  — every 6 hours
    """

    base_url: str = Field(
        default=DEFAULT_TRUST_BASE_URL,
        description="Base URL the ca-bundle.crt and int-bundle.crt files are published under",
    )
    window_days: int = Field(default=30, ge=0, description="Report certificates expiring within")
    cron: str = Field(
        default="0 3 * * *",
        description="Cron expression (5 fields: minute hour dom month dow)",
    )
    run_on_startup: bool = Field(default=True)
    retry_attempts: int = Field(default=5, ge=1, description="Scan attempts per bundle on each run")
    retry_seconds: float = Field(default=60, ge=0, description="Wait between attempts on one bundle")

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        """Reject expressions that don't have exactly 5 space-separated fields."""
        fields = value.strip().split()
        if len(fields) != 5:
            raise ValueError(
                f"Cron expression must have exactly 5 fields "
                f"(minute hour dom month dow), got {len(fields)}: {value!r}"
            )
        return value.strip()

    @property
    def window_seconds(self) -> int:
        return self.window_days * 24 * 60 * 60


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables (Kubernetes ConfigMap)
      2. .env file
      3. Default values

    `database` is optional so the monitor, which never touches the
    database, can run without it; the CLI checks for it before use.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database: DatabaseSettings | None = None
    store: StoreSettings = Field(default_factory=lambda: StoreSettings())
    monitor: MonitorSettings = Field(default_factory=lambda: MonitorSettings())

    bundle: str = Field(default="int", pattern="^(ca|int)$")
    http_timeout_seconds: int = Field(default=60, ge=1)
    log_level: str = Field(default="INFO")
