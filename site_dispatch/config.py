# site_dispatch/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Record store backend
    # "postgres" - asyncpg-backed store (production)
    # "memory"   - in-process store (dev server, tests)
    store_backend: Literal["postgres", "memory"] = "postgres"
    memory_profiles_file: str | None = None  # JSON list of profiles seeded into the memory backend

    # Database
    expected_schema_version: str = "001_site_visits.sql"
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 20
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000

    # Notifications
    notifications_enabled: bool = True  # Master switch; when off, sends are logged and dropped
    notification_list_limit: int = 50  # Latest N notifications returned per recipient

    # Visit listing
    visit_list_default_limit: int = 50
    visit_list_max_limit: int = 500
    non_manager_visibility_days: int = 30  # Non-managers only see visits dated within this window

    # HTTP
    allowed_origins: list[str] = ["*"]
    enable_request_logging: bool = True
    enable_metrics: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []
        if self.store_backend == "postgres" and not self.database_url:
            missing.append("database_url")
        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.store_backend == "memory":
        warnings.append("prod: store_backend=memory (visits are lost on restart).")

    if s.store_backend == "memory" and not s.memory_profiles_file:
        warnings.append("store_backend=memory without memory_profiles_file (every actor is unknown).")

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if not s.notifications_enabled:
        warnings.append("notifications_enabled=False (requesters and drivers will not be notified).")

    if s.visit_list_default_limit > s.visit_list_max_limit:
        warnings.append("visit_list_default_limit exceeds visit_list_max_limit (default is clamped).")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
validate_or_warn(settings)
