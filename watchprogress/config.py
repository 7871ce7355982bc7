from typing import Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Progress API (client side)
    PROGRESS_API_BASE_URL: str = "http://localhost:8080"
    PROGRESS_API_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: int = 30

    # Tracking
    SAVE_DEBOUNCE_SECONDS: float = 2.0
    PERIODIC_SAVE_SECONDS: float = 10.0
    POSITION_POLL_INTERVAL_SECONDS: float = 1.0
    SEEK_FORWARD_TOLERANCE_SECONDS: float = 2.0
    RESUME_MIN_POSITION_SECONDS: float = 1.0

    # Persistence (server side)
    STORE_PATH: str = "/data/progress.json"
    PERSIST_ENABLED: bool = True

    # Bearer token -> subject id. Real deployments replace server.token_verifier.
    API_TOKENS: Dict[str, str] = {}

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_HOST: str = "0.0.0.0"
    HTTP_SERVER_PORT: int = 8080

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
