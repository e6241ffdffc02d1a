from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    app_version: str = "0.3.0"
    database_path: str = "data/humanizer.db"
    log_level: str = "INFO"

    humanizer_api_key: str = ""
    humanizer_base_url: str = "https://humanize.undetectable.ai"
    humanizer_model: str = "v11"

    submit_timeout_sec: int = 30
    fetch_timeout_sec: int = 20

    poll_interval_sec: float = 5.0
    poll_max_attempts: int = 30

    min_text_chars: int = 50
    chars_per_credit: int = 100
    signup_max_credits: int = 100
    persist_retries: int = 3
    disconnect_check_sec: float = 1.0

    admin_api_token: str = ""


settings = Settings()
