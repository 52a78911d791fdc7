from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "local"
    app_name: str = "stayflow-api"
    api_version: str = "v1"
    api_cors_allowed_origins: str = "http://localhost:5173,http://localhost:3000"
    api_cors_allow_credentials: bool = True
    log_level: str = "INFO"

    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""
    cache_ttl_seconds: int = 30

    default_timezone: str = "Asia/Tokyo"
    default_check_in_time: str = "15:00"
    default_check_out_time: str = "11:00"
    default_currency: str = "JPY"

    beds24_webhook_secret: str = ""

    feature_message_scheduler: bool = False
    enable_scheduled_messages: bool = False
    message_scheduler_interval_sec: int = 60
    message_dispatch_batch_size: int = 50
    message_generation_window_days: int = 7
    message_recent_reservation_minutes: int = 15
    message_reconcile_days_ahead: int = 10
    message_reconcile_interval_ticks: int = 30

    guest_chat_match_window_sec: int = 30
    guest_message_preview_length: int = 160

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in {"prod", "production"}

    @property
    def scheduled_dispatch_enabled(self) -> bool:
        return self.is_production or self.enable_scheduled_messages


settings = Settings()
