import os
from pydantic import BaseModel
from functools import lru_cache
from dotenv import load_dotenv
load_dotenv()


def _env_bool(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    APP_NAME: str = os.getenv("APP_NAME", "Bulk Match Engine")
    ENV: str = os.getenv("ENV", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    SQLITE_PATH: str = os.getenv("SQLITE_PATH", "bulk_match.sqlite3")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY") or None
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENROUTER_API_KEY: str | None = os.getenv("OPENROUTER_API_KEY") or None
    OPENROUTER_MODEL: str = os.getenv("OPENROUTER_MODEL", "openai/gpt-4o-mini")
    SCORER_TIMEOUT_S: float = float(os.getenv("SCORER_TIMEOUT_S", "30"))
    # Job sizing and scheduling
    MAX_TOTAL_ITEMS: int = int(os.getenv("MAX_TOTAL_ITEMS", "10000"))
    MAX_CONCURRENT_JOBS: int = int(os.getenv("MAX_CONCURRENT_JOBS", "4"))
    PAIR_CONCURRENCY: int = int(os.getenv("PAIR_CONCURRENCY", "1"))
    # Progress persistence
    PROGRESS_BATCH_SIZE: int = int(os.getenv("PROGRESS_BATCH_SIZE", "1"))
    PROGRESS_FLUSH_INTERVAL_MS: int = int(os.getenv("PROGRESS_FLUSH_INTERVAL_MS", "2000"))
    STORE_WRITE_MAX_RETRIES: int = int(os.getenv("STORE_WRITE_MAX_RETRIES", "2"))
    STORE_WRITE_BACKOFF_S: float = float(os.getenv("STORE_WRITE_BACKOFF_S", "0.5"))
    # Notifications
    NOTIFY_WEBHOOK_URL: str | None = os.getenv("NOTIFY_WEBHOOK_URL") or None
    NOTIFY_TIMEOUT_S: float = float(os.getenv("NOTIFY_TIMEOUT_S", "5"))
    NOTIFY_ON_CANCEL: bool = _env_bool("NOTIFY_ON_CANCEL")

@lru_cache
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
