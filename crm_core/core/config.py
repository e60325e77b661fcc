from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "CRM Core"
    app_env: str = "local"
    log_level: str = "INFO"
    default_tenant_id: str = "tenant_001"
    phone_match_digits: int = 10
    junior_creates_verified: bool = True
    audit_user_name_fallback: bool = True
    persistence_enabled: bool = True
    persistence_path: str = ".crm-data/enhanced-data.json"
    snapshot_version: str = "2.0.0"
    database_url: str = "sqlite+pysqlite:///:memory:"
    metrics_enabled: bool = False
    otel_enabled: bool = False
    otel_exporter_endpoint: str | None = None
    otel_console_exporter: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
