# change_audit/config/settings.py

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuditSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_name: str = "change-audit"
    environment: Literal["dev", "test", "prod"] = "dev"
    version: str = "0.1.0"

    # --- Database ---
    mongo_uri: str = Field(..., min_length=1)

    # --- Audit pipeline ---
    audit_collections: list[str] = Field(..., min_length=1)  # JSON list in env
    audit_collection: str = "audit_logs"
    transform_failure_policy: Literal["skip", "untransformed", "mark_errored"] = "skip"
    resubscribe_initial_delay_seconds: float = Field(1.0, ge=0)
    resubscribe_max_delay_seconds: float = Field(30.0, ge=0)
    max_resubscribe_attempts: Optional[int] = Field(None, ge=1)

    # --- Observability ---
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


@lru_cache
def get_settings() -> AuditSettings:
    return AuditSettings()
