from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "chunked-upload-client"
    app_version: str = "dev"
    upload_api_root_url: str = "https://upload.box.com/api"
    api_version: str = "2.0"
    access_token: str = ""
    request_timeout_seconds: float = 60.0
    parallelism: int = 4
    retry_interval_seconds: float = 1.0
    max_part_retries: int = 3
    parts_page_limit: int = 1000
    commit_max_attempts: int = 30
    commit_timeout_seconds: float = 600.0
    tracing_enabled: bool = False
    tracing_service_name: str = "chunked-upload-client"
    otlp_endpoint: str = "localhost:4317"
    otlp_insecure: bool = True

    @property
    def upload_base_url(self) -> str:
        return f"{self.upload_api_root_url.rstrip('/')}/{self.api_version}"


settings = Settings()
