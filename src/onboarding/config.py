"""
Onboarding - Configuration and settings.

All runtime knobs come from the environment (or .env). Storage backend,
debounce delay and the notification service live here so the core stays
free of hard-coded deployment details.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CRITICAL_FIELDS = (
    "locations",
    "location_count",
    "groups",
    "legal_business_name",
    "tax_id",
)


class OnboardingSettings(BaseSettings):
    """
    Settings for the onboarding draft engine and its web surface.

    Supabase fields are optional: the local backend (demo mode) runs
    without them.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    onboarding_env: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Persistence
    storage_backend: Literal["supabase", "local"] = "local"
    local_data_dir: Path = Path(".onboarding_data")
    forms_collection: str = "form_progress"
    invitations_collection: str = "share_invitations"
    submissions_collection: str = "forms"

    # Supabase
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    supabase_service_role_key: str | None = None
    storage_bucket: str = "onboarding-files"

    # Notification service
    notification_service_url: str = "http://localhost:3001"
    notification_timeout_seconds: float = 10.0

    # Draft behaviour
    save_debounce_seconds: float = 1.0
    # Comma-separated draft field names that are also saved immediately
    critical_fields: str = ",".join(DEFAULT_CRITICAL_FIELDS)
    min_menu_groups: int = 2

    @field_validator("min_menu_groups")
    @classmethod
    def at_least_one_group(cls, v: int) -> int:
        if v < 1:
            raise ValueError("min_menu_groups must be at least 1")
        return v

    @property
    def critical_field_names(self) -> frozenset[str]:
        return frozenset(f.strip() for f in self.critical_fields.split(",") if f.strip())

    @property
    def is_development(self) -> bool:
        return self.onboarding_env == "development"

    @property
    def is_production(self) -> bool:
        return self.onboarding_env == "production"


@lru_cache
def get_settings() -> OnboardingSettings:
    """Get cached settings instance."""
    return OnboardingSettings()


class _SettingsProxy:
    """Lazy proxy for settings to avoid loading .env at import time."""

    _instance: OnboardingSettings | None = None

    def __getattr__(self, name: str):
        if self._instance is None:
            self._instance = get_settings()
        return getattr(self._instance, name)


settings = _SettingsProxy()
