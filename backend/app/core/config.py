from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "Sahayak Government Services Assistant"
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./sahayak.db"
    SEED_DEMO_DATA: bool = True

    # Device-side store (offline queue, workflow history, settings)
    LOCAL_DATABASE_URL: str = "sqlite:///./sahayak_local.db"

    # Sync transport
    SYNC_API_URL: str = "http://localhost:8000/api/v1"
    SYNC_ITEM_TIMEOUT: float = 10.0  # seconds per queued item
    SYNC_BATCH_SIZE: int = 10
    SYNC_MAX_REJECTIONS: int = 5  # 0 = never dead-letter

    # Connectivity monitor
    CONNECTIVITY_PROBE_URL: Optional[str] = None  # defaults to <server>/health
    CONNECTIVITY_POLL_INTERVAL: float = 15.0

    # Remote submission
    REFERENCE_MAX_ATTEMPTS: int = 8
    DEFAULT_PROCESSING_DAYS: int = 30

    class Config:
        env_file = ".env"


settings = Settings()
