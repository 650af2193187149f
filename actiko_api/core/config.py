from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ACTIKO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str
    redis_url: str
    jwt_secret: str
    app_env: str = "development"
    cors_allowed_origins: str = "http://localhost:3000"
    clock_skew_tolerance_seconds: int = 300
    sync_batch_max_items: int = 100
    sync_process_max_batch_size: int = 100
    sync_process_default_batch_size: int = 50
    sync_default_max_retries: int = 3
    duplicate_tolerance_ms: int = 1000
    pull_default_limit: int = 100
    git_sha: str | None = None


settings = Settings()
