from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_LEVEL_CHOICES = {"DEBUG", "INFO", "WARN", "ERROR"}
_LOG_LEVEL_ALIASES = {"WARNING": "WARN"}


def normalize_log_level(value: object) -> str:
    """Normalize log-level inputs to the canonical choices used by the CLI."""

    if value is None:
        return "INFO"

    text = str(value).strip()
    if not text:
        return "INFO"

    upper = text.upper()
    return _LOG_LEVEL_ALIASES.get(upper, upper)


class SheetMergeSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SHEETMERGE_", env_file=".env", extra="ignore")

    log_format: Literal["json", "text"] = Field(default="json")
    log_level: str = Field(default="INFO")
    temp_dir: str | None = Field(default=None, description="Directory for worker payloads and intermediates")
    output_dir: str | None = Field(default=None, description="Directory receiving merge results")

    # Worker pool
    max_workers: int = Field(default=2, ge=1)
    worker_timeout_seconds: float = Field(default=300.0, gt=0)
    job_retention_seconds: float = Field(default=300.0, ge=0)
    worker_memory_mb: int = Field(default=2048, ge=0, description="Address-space ceiling, 0 disables it")

    # Input limits
    max_file_size_mb: float = Field(default=6.0, gt=0)
    max_files: int = Field(default=400, ge=1)
    max_total_size_mb: float = Field(default=100.0, gt=0)

    # ODS export
    office_binaries: list[str] = Field(default_factory=lambda: ["soffice", "libreoffice"])
    office_timeout_seconds: float = Field(default=120.0, gt=0)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        return normalize_log_level(value)


settings = SheetMergeSettings()
