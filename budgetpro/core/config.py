from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic's rules (e.g., APP_NAME, DEBUG,
    DATA_DIR, DB_FILENAME, API_BASE_URL, OFFLINE_QUEUE_MAX_ITEMS).
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Basic app metadata
    app_name: str = "Budget Pro"
    debug: bool = True
    version: str = "1.0.0"

    # Server persistence
    data_dir: Path = Path("data")
    db_filename: str = "budgetpro.sqlite3"
    db_path: Optional[Path] = None  # derived if not provided

    # Sessions
    session_cookie_name: str = "bp_session"
    session_ttl_hours: int = 24 * 14

    # Offline client
    api_base_url: AnyHttpUrl = "http://127.0.0.1:8000"
    http_timeout_seconds: float = 5.0
    client_store_filename: str = "client.sqlite3"
    client_store_path: Optional[Path] = None  # derived if not provided
    cache_version: str = "budget-pro-v1.0.0"
    api_prefix: str = "/api/"
    offline_queue_max_items: int = 1000
    sync_backoff_initial_seconds: float = 5.0
    sync_backoff_max_seconds: float = 300.0
    sync_diagnostics_limit: int = 100
    static_assets: List[str] = [
        "/static/index.html",
        "/static/manifest.json",
    ]

    def init_post_load(self) -> None:
        """Finalize derived fields and ensure directories exist."""
        if self.db_path is None:
            self.db_path = self.data_dir / self.db_filename
        if self.client_store_path is None:
            self.client_store_path = self.data_dir / self.client_store_filename
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if not self.api_prefix.startswith("/") or not self.api_prefix.endswith("/"):
            raise ValueError(
                f"api_prefix must start and end with '/', got '{self.api_prefix}'"
            )
        if self.offline_queue_max_items <= 0:
            raise ValueError("offline_queue_max_items must be positive")
        if self.sync_backoff_initial_seconds > self.sync_backoff_max_seconds:
            raise ValueError(
                "sync_backoff_initial_seconds cannot exceed sync_backoff_max_seconds"
            )


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings
