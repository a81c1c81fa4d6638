from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./menu_ocr.db"

    # Local OCR provider: mock | paddleocr
    local_ocr_provider: str = "mock"
    paddle_lang: str = "es"
    paddle_use_gpu: bool = False

    # Cloud vision (optional; without a key the service runs local-only)
    cloud_vision_api_key: str | None = None
    cloud_vision_endpoint: str = "https://vision.googleapis.com/v1/images:annotate"
    cloud_request_timeout_s: float = 30.0
    cloud_language_hints: list[str] = ["es", "en"]

    # Orchestration defaults
    confidence_floor: int = 20
    max_time_ms: int = 45000

    # Monthly cloud usage tracking
    cloud_monthly_limit: int = 500
    cloud_cost_per_call: float = 0.0015
    cloud_usage_warning_thresholds: list[float] = [0.5, 0.8, 0.9]
    cloud_usage_enforce_limit: bool = True


settings = Settings()
