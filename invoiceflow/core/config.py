from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    database_url: str

    # Document loader: file (pdfminer / Pillow) | mock
    document_loader: str = "file"

    # OpenAI vision extraction. A missing key switches the extractor to
    # synthetic candidates.
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    openai_max_tokens: int = 4096
    openai_temperature: float = 0.1
    openai_timeout_s: float = 60.0

    # Processing queue
    max_concurrent_processing: int = 10
    processing_timeout_ms: int = 30_000
    retry_attempts: int = 3
    retry_delay_ms: int = 1_000

    # Webhooks
    webhook_secret: str = "default-secret"
    webhook_timeout_s: float = 10.0

    # Files
    upload_dir: str = "./uploads"
    export_dir: str = "./exports"
    max_file_size: int = 10 * 1024 * 1024
    allowed_file_types: str = "pdf,png,jpg,jpeg,tiff"

    @property
    def allowed_extensions(self) -> set[str]:
        return {ext.strip().lower() for ext in self.allowed_file_types.split(",") if ext.strip()}


settings = Settings()
