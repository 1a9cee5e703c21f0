from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'School Scheduling Engine'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Bangkok'
    database_url: str = 'sqlite:///./scheduling.db'
    auth_secret: str = 'change-me'
    auth_token_ttl_hours: int = 12
    holiday_feed_url: str = 'https://www.myhora.com/calendar/ical/holiday.aspx?{year}.json'
    holiday_fetch_timeout_seconds: float = 1.5
    holiday_cache_ttl_hours: int = 24
    makeup_probe_max_weeks: int = 52
    recurrence_never_horizon_days: int = 365
    private_leave_notice_hours: int = 24
    max_course_drops: int = 2
    default_page_size: int = 20
    max_page_size: int = 200
    cache_backend: str = 'memory'
    cache_redis_url: str | None = None
    calendar_cache_ttl: int = 60
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200


settings = Settings()
