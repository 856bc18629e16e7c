"""
Environment-driven settings for the migration command.

``MigrationSettings`` reads the process environment and an optional ``.env``
file (variables already set in the environment win) and produces the
``MigrationConfig`` a run uses. Command-line flags are applied on top with
``with_overrides``.

Environment variables:
    MONGODB_URI                      connection string (required to run)
    MIGRATION_DATABASE               database name (default: from the URI)
    MIGRATION_SOURCE_COLLECTION      live collection (default "products")
    MIGRATION_SHADOW_COLLECTION      shadow collection (default "products_v2")
    MIGRATION_LOCK_COLLECTION        lease collection (default "migration_locks")
    MIGRATION_BACKUP_DIR             backup artifact directory (default "backups")
    MIGRATION_REPORT_PATH            report file (default "migration-report.json")
    MIGRATION_BATCH_SIZE             records per batch (default 10)
    MIGRATION_VALIDATION_THRESHOLD   minimum shadow/source ratio (default 0.95)
    MIGRATION_PERFORMANCE_POLICY     "advisory" or "strict" (default "advisory")
    MIGRATION_PHASE_TIMEOUT_SECONDS  deadline per phase (default none)
    MIGRATION_DEFINITION             "module:attribute" of the migration definition
    MIGRATION_LOG_LEVEL              logging level name (default "INFO")
    MIGRATION_ENABLE_TRACING         emit OpenTelemetry spans (default true)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shadowmigrate.migration.exceptions import MigrationConfigError
from shadowmigrate.migration.models import MigrationConfig, PerformancePolicy

ENV_PREFIX = "MIGRATION_"
URI_VARIABLE = "MONGODB_URI"


class MigrationSettings(BaseSettings):
    """
    Validated settings for one invocation.

    Example:
        >>> settings = MigrationSettings.from_env(env_file=None)
        >>> settings.source_collection
        'products'
        >>> settings.to_migration_config().batch_size
        10
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    mongodb_uri: str | None = Field(
        default=None,
        validation_alias=AliasChoices(URI_VARIABLE, "mongodb_uri"),
    )
    database: str | None = None
    source_collection: str = "products"
    shadow_collection: str = "products_v2"
    lock_collection: str = "migration_locks"
    backup_dir: str = "backups"
    report_path: str = "migration-report.json"
    batch_size: int = Field(default=10, ge=1)
    validation_threshold: float = Field(default=0.95, gt=0.0, le=1.0)
    performance_policy: PerformancePolicy = PerformancePolicy.ADVISORY
    phase_timeout_seconds: float | None = Field(default=None, gt=0)
    definition: str | None = None
    log_level: str = "INFO"
    enable_tracing: bool = True

    @field_validator("performance_policy", mode="before")
    @classmethod
    def _normalize_policy(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value!r}")
        return level

    @field_validator("definition")
    @classmethod
    def _check_definition(cls, value: str | None) -> str | None:
        if value is not None and ":" not in value:
            raise ValueError("definition must look like 'package.module:attribute'")
        return value

    @classmethod
    def from_env(cls, env_file: str | Path | None = ".env") -> MigrationSettings:
        """
        Build settings from environment variables and an optional dotenv file.

        Empty variables are treated as unset; a missing ``env_file`` is skipped.

        Raises:
            MigrationConfigError: If a variable holds an invalid value
        """
        try:
            return cls(_env_file=env_file)
        except ValidationError as e:
            raise MigrationConfigError(_describe_errors(e)) from e

    @classmethod
    def variable_names(cls) -> list[str]:
        """Environment variables the settings read, in field order."""
        return [
            URI_VARIABLE if name == "mongodb_uri" else f"{ENV_PREFIX}{name.upper()}"
            for name in cls.model_fields
        ]

    def with_overrides(self, **overrides: Any) -> MigrationSettings:
        """Return settings with every non-None override applied and revalidated."""
        values = self.model_dump()
        values.update({key: value for key, value in overrides.items() if value is not None})
        # model_validate skips the environment sources, so only ``values`` count.
        try:
            return self.model_validate(values)
        except ValidationError as e:
            raise MigrationConfigError(_describe_errors(e)) from e

    def to_migration_config(self) -> MigrationConfig:
        return MigrationConfig(
            source_collection=self.source_collection,
            shadow_collection=self.shadow_collection,
            lock_collection=self.lock_collection,
            batch_size=self.batch_size,
            validation_threshold=self.validation_threshold,
            performance_policy=self.performance_policy,
            phase_timeout_seconds=self.phase_timeout_seconds,
            backup_dir=self.backup_dir,
            report_path=self.report_path,
        )


def _describe_errors(error: ValidationError) -> str:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
        for item in error.errors()
    )
    return f"Invalid settings: {problems}"


__all__ = ["ENV_PREFIX", "URI_VARIABLE", "MigrationSettings"]
