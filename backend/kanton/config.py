from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Kanton Intake API"
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_origins: str = "http://localhost:5173"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"

    # The case backend (REST) is the source of truth for cases, responses and summons sections.
    backend_base_url: str = "http://localhost:5000"
    backend_api_token: str = ""
    backend_timeout_seconds: float = 30.0
    # Section generation waits on an LLM flow; keep it well above the default timeout.
    generation_timeout_seconds: float = 300.0

    max_upload_files: int = 20
    max_upload_file_bytes: int = 100 * 1024 * 1024
    query_cache_ttl_seconds: float = 30.0
    sections_poll_interval_seconds: float = 2.0
    upload_progress_interval_seconds: float = 0.25

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
