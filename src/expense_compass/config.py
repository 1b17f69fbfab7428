"""Environment-driven settings for expense-compass."""

import os
from functools import lru_cache
from pathlib import Path


DEFAULT_API_URL = "http://localhost:8000"

# Bounded timeout for every Record Store call, background ones included.
DEFAULT_REMOTE_TIMEOUT_SECS = 10.0

DEFAULT_REPORT_URL_TTL_SECS = 3600


class Settings:
    def __init__(
        self,
        data_dir: Path,
        db_path: Path,
        api_url: str,
        api_token: str | None,
        remote_timeout_secs: float,
        user_id: str | None,
        email: str | None,
        log_level: str,
        report_url_ttl_secs: int,
        embedded_store: bool = False,
    ) -> None:
        self.data_dir = data_dir
        self.db_path = db_path
        self.api_url = api_url
        self.api_token = api_token
        self.remote_timeout_secs = remote_timeout_secs
        self.user_id = user_id
        self.email = email
        self.log_level = log_level
        self.report_url_ttl_secs = report_url_ttl_secs
        self.embedded_store = embedded_store

    @property
    def reports_dir(self) -> Path:
        return self.data_dir / "reports"

    @property
    def store_db_path(self) -> Path:
        return self.data_dir / "record_store.db"


def _ensure_data_dir() -> Path:
    default = Path.home() / ".cache" / "expense-compass"
    root = Path(os.getenv("EXPENSE_COMPASS_DATA_DIR", str(default))).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    db_path = Path(os.getenv("EXPENSE_COMPASS_DB_PATH", str(data_dir / "cache.db")))
    return Settings(
        data_dir=data_dir,
        db_path=db_path,
        api_url=os.getenv("EXPENSE_COMPASS_API_URL", DEFAULT_API_URL).rstrip("/"),
        api_token=os.getenv("EXPENSE_COMPASS_TOKEN") or None,
        remote_timeout_secs=float(
            os.getenv("EXPENSE_COMPASS_REMOTE_TIMEOUT_SECS", str(DEFAULT_REMOTE_TIMEOUT_SECS))
        ),
        user_id=os.getenv("EXPENSE_COMPASS_USER_ID") or None,
        email=os.getenv("EXPENSE_COMPASS_EMAIL") or None,
        log_level=os.getenv("EXPENSE_COMPASS_LOG_LEVEL", "INFO"),
        report_url_ttl_secs=int(
            os.getenv("EXPENSE_COMPASS_REPORT_URL_TTL_SECS", str(DEFAULT_REPORT_URL_TTL_SECS))
        ),
        embedded_store=os.getenv("EXPENSE_COMPASS_EMBEDDED_STORE", "").lower() in ("1", "true", "yes"),
    )
