import secrets

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Marina Obuv"
    environment: str = "development"
    secret_key: str = ""
    token_expire_minutes: int = 60 * 24
    database_url: str = "sqlite:///./obuv.db"
    admin_phones: str = ""
    log_level: str = "INFO"

    llm_provider: str = "openai"
    llm_api_key: str = ""
    llm_base_url: str = ""
    llm_vision_model: str = "gpt-4o-mini"
    llm_text_model: str = "gpt-4o-mini"
    llm_timeout_sec: float = 120.0
    llm_max_retries: int = 5
    llm_retry_base_delay_sec: float = 2.0
    llm_retry_max_delay_sec: float = 60.0

    s3_endpoint: str = "https://storage.yandexcloud.net"
    s3_region: str = "ru-central1"
    s3_bucket: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = ""
    cdn_base_url: str = ""

    aggregator_base_url: str = "https://tk-sad.ru"
    aggregator_playwright_timeout_ms: int = 90000
    aggregator_playwright_debug: bool = False
    aggregator_image_timeout_sec: float = 30.0

    purchase_old_price_factor: float = 1.8
    aggregator_markup_factor: float = 1.3

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


settings = Settings()

if not settings.secret_key or settings.secret_key == "change-me-in-production":
    # Ephemeral fallback for local/dev startup when SECRET_KEY is not set.
    settings.secret_key = secrets.token_urlsafe(48)
