"""
Application configuration using Pydantic Settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # OpenAI
    OPENAI_API_KEY: str = ""
    OPENAI_MAX_RETRIES: int = 0
    OPENAI_TIMEOUT_SECONDS: float = 120.0
    VISION_MODEL: str = "gpt-4o"
    SUMMARY_MODEL: str = "gpt-4o"
    TRANSCRIPTION_MODEL: str = "whisper-1"
    VISION_MAX_TOKENS: int = 1000

    # Inference batching / throttling
    VISION_BATCH_SIZE: int = 3
    INFERENCE_MIN_INTERVAL_SECONDS: float = 2.0
    INFERENCE_RATE_LIMITER: str = "interval"  # "interval" | "token_bucket"
    INFERENCE_BUCKET_CAPACITY: int = 3
    SKIP_FAILED_BATCHES: bool = False

    # Transcription
    TRANSCRIPTION_REQUIRED: bool = False
    TRANSCRIPTION_MAX_BYTES: int = 25 * 1024 * 1024
    TRANSCRIPT_WINDOW_SECONDS: Optional[float] = None
    MAX_TRANSCRIPT_CHARS: int = 10000

    # Media tools
    SCENE_THRESHOLD: float = 0.3
    MIDPOINT_GAP_SECONDS: float = 5.0
    ALLOW_PARTIAL_FRAMES: bool = True
    EXTRACTION_TIMEOUT_SECONDS: int = 300

    # Acquisition
    WORKSPACE_ROOT: str = "/tmp/vcb_workspaces"
    DOWNLOAD_TIMEOUT_SECONDS: int = 120
    DOWNLOAD_SOCKET_TIMEOUT_SECONDS: int = 30
    DOWNLOAD_COOKIES_FILE: str = ""  # read-only; each download gets a private copy
    MAX_COOKIES_CHARS: int = 100_000
    DURATION_FALLBACK_SECONDS: float = 15.0

    # Uploads
    UPLOAD_DIR: str = "/tmp/vcb_uploads"
    MAX_UPLOAD_BYTES: int = 100 * 1024 * 1024  # 100 MB

    # Progress tracking
    PROGRESS_TTL_SECONDS: int = 3600

    # Request quotas
    ANALYSIS_RATE_LIMIT_PER_HOUR: int = 30
    ESTIMATE_RATE_LIMIT_PER_HOUR: int = 120

    # Feature Flags
    DERIVE_INSIGHTS: bool = True

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()


def require_openai_api_key(config: Optional[Settings] = None) -> str:
    """Return configured OpenAI API key or raise a configuration error."""
    api_key = ((config or settings).OPENAI_API_KEY or "").strip()
    if not api_key or "your_" in api_key:
        raise ValueError("OPENAI_API_KEY is not configured")
    return api_key
