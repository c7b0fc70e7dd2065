from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "WorkforceSummary"
    log_level: str = "INFO"
    log_json: bool = True
    default_timezone: str = "Europe/Berlin"
    default_weekly_hours: float = 40.0
    metadata_cache_ttl_seconds: int = 60 * 60
    holiday_cache_ttl_seconds: int = 24 * 60 * 60
    month_cache_ttl_seconds: int = 5 * 60
    historical_month_cache_ttl_seconds: int = 24 * 60 * 60
    period_cache_ttl_seconds: int = 5 * 60
    month_cache_max_entries: int = 36
    max_year_range: int = 5
    time_tracking_api_token: str | None = None
    time_tracking_workspace_id: str | None = None
    time_tracking_api_base_url: str = "https://api.track.toggl.com"
    time_tracking_reports_base_url: str = "https://api.track.toggl.com/reports/api/v3"
    time_tracking_request_timeout_seconds: float = 30.0
    time_tracking_min_interval_seconds: float = 1.1
    time_tracking_max_retries: int = 2
    time_tracking_backoff_step_seconds: float = 3.0
    time_tracking_quota_cooldown_seconds: int = 15 * 60
    time_tracking_batch_size: int = 3

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def is_time_tracking_configured(settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return bool(
        (settings.time_tracking_api_token or "").strip()
        and (settings.time_tracking_workspace_id or "").strip()
    )
