import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        page_size: int,
        max_pages: int,
        table_page_size: int,
        worker_url: str,
        worker_timeout_secs: float,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.page_size = page_size
        self.max_pages = max_pages
        self.table_page_size = table_page_size
        self.worker_url = worker_url
        self.worker_timeout_secs = worker_timeout_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "America/New_York")
    csrf_secret = os.getenv(
        "LEDGER_CSRF_SECRET",
        "4f1c2b9e7d0a4c58a3e6b1d92f7c0e8a5b3d6f1e9c2a7b4d0e8f3a6c1b9d2e7f",
    )
    page_size = int(os.getenv("LEDGER_PAGE_SIZE", "1000"))
    max_pages = int(os.getenv("LEDGER_MAX_PAGES", "10"))
    table_page_size = int(os.getenv("LEDGER_TABLE_PAGE_SIZE", "50"))
    worker_url = os.getenv(
        "LEDGER_WORKER_URL", "http://localhost:8081"
    ).rstrip("/")
    worker_timeout_secs = float(os.getenv("LEDGER_WORKER_TIMEOUT_SECS", "30"))
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        page_size=page_size,
        max_pages=max_pages,
        table_page_size=table_page_size,
        worker_url=worker_url,
        worker_timeout_secs=worker_timeout_secs,
        log_level=log_level,
    )
