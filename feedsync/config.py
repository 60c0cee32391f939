from pydantic_settings import BaseSettings, SettingsConfigDict

VERSION = "1.0.0"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    FEEDSYNC_DB_URL: str = "sqlite+aiosqlite:///./feedsync.db"

    # --- Minimal B2B Auth (API key) ---
    # Send: X-API-Key: <key>
    API_KEY: str | None = None

    # --- Feed source ---
    FEED_URL: str | None = None
    FEED_REQUEST_TIMEOUT_S: int = 30
    FEED_USER_AGENT: str = f"feedsync/{VERSION}"
    FEED_VERIFY_SSL: bool = True

    # Optional: custom CA bundle path (corp proxies)
    FEED_CA_BUNDLE: str | None = None

    # --- Sync run tuning ---
    SYNC_BATCH_SIZE: int = 50
    SYNC_BATCH_PAUSE_S: float = 0.1  # backpressure between batches
    SYNC_LOCK_TTL_S: int = 300
    SYNC_LOCK_STALE_S: int = 600
    SYNC_HISTORY_LIMIT: int = 100

    # --- Scheduler ---
    AUTO_SYNC_ENABLED: bool = False
    AUTO_SYNC_INTERVAL_MINUTES: int = 60
    IMAGE_INTERVAL_MINUTES: int = 5

    # --- Images ---
    IMAGE_MODE: str = "local"  # local|external
    IMAGE_BATCH_SIZE: int = 20
    IMAGE_DOWNLOAD_TIMEOUT_S: int = 30
    IMAGE_HEAD_TIMEOUT_S: int = 10
    IMAGE_MAX_FILE_SIZE: int = 10 * 1024 * 1024
    IMAGE_MAX_RETRIES: int = 3
    IMAGE_CONTINUOUS_MAX_MINUTES: int = 10
    IMAGE_FAILED_RETENTION_DAYS: int = 7
    IMAGE_STORAGE_DIR: str = "data/images"


settings = Settings()
