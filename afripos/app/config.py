import os
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


class Settings:
    def __init__(self) -> None:
        self.env = os.getenv("AFRIPOS_ENV", "local")
        # Remote relational store (catalog + orders). Empty means "no remote configured".
        self.db_url = (os.getenv("DATABASE_URL") or "").strip()
        self.offline_db_path = (os.getenv("AFRIPOS_OFFLINE_DB") or "").strip() or os.path.join(
            os.path.expanduser("~"), ".afripos", "offline.sqlite"
        )
        self.health_url: Optional[str] = (os.getenv("AFRIPOS_HEALTH_URL") or "").strip() or None
        # Applied to libpq connect_timeout and statement_timeout.
        self.remote_timeout_s = _env_float("AFRIPOS_REMOTE_TIMEOUT_S", 5.0)
        self.sync_interval_s = _env_float("AFRIPOS_SYNC_INTERVAL_S", 30.0)
        self.atomic_remote_commit = _env_bool("AFRIPOS_ATOMIC_COMMIT", False)
        self.cashier = (os.getenv("AFRIPOS_CASHIER") or "").strip() or "POS"
        self.seller_id = (os.getenv("AFRIPOS_SELLER_ID") or "").strip() or None
        self.pool_min_size = _env_int("DB_POOL_MIN_SIZE", 1)
        self.pool_max_size = _env_int("DB_POOL_MAX_SIZE", 4)
        self.log_level = (os.getenv("AFRIPOS_LOG_LEVEL") or "info").strip().lower() or "info"


settings = Settings()
