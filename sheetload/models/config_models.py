from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the worksheet -> PostgreSQL loader.

ImportConfig is what the YAML loader (sheetload.config.loader) returns;
ImportOptions is the subset the orchestrator actually needs per run, so API
callers can build one without touching YAML.
"""

DEFAULT_BATCH_SIZE = 1000
DEFAULT_SCHEMA = "public"


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportOptions:
    """Per-import behaviour switches."""
    batch_size: int = DEFAULT_BATCH_SIZE
    ignore_extra_headers: bool = False  # True: 余分なヘッダは警告のみで無視
    default_schema: str = DEFAULT_SCHEMA

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1 (got {self.batch_size})")


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object loaded from config/import.yml."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    batch_size: int = DEFAULT_BATCH_SIZE
    default_schema: str = DEFAULT_SCHEMA
    ignore_extra_headers: bool = False
    error_log_dir: str = "./logs"

    def to_options(
        self,
        *,
        batch_size: int | None = None,
        ignore_extra_headers: bool | None = None,
    ) -> ImportOptions:
        """Build ImportOptions, letting CLI flags override file values."""
        return ImportOptions(
            batch_size=batch_size if batch_size is not None else self.batch_size,
            ignore_extra_headers=(
                ignore_extra_headers
                if ignore_extra_headers is not None
                else self.ignore_extra_headers
            ),
            default_schema=self.default_schema,
        )
