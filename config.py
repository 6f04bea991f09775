import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        cron_secret: str,
        identity_secret: str,
        identity_max_age_secs: int,
        notify_url: str,
        notify_timeout_secs: float,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.cron_secret = cron_secret
        self.identity_secret = identity_secret
        self.identity_max_age_secs = identity_max_age_secs
        self.notify_url = notify_url
        self.notify_timeout_secs = notify_timeout_secs
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    cron_secret = os.getenv("LEDGER_CRON_SECRET", "")
    identity_secret = os.getenv(
        "LEDGER_IDENTITY_SECRET",
        "5d1c0b8e2f4a47c39e6b8a1d0f2c7e94b3a6d8f1c2e5a7b9d0c3f6e8a1b4d7c2",
    )
    identity_max_age_secs = int(os.getenv("LEDGER_IDENTITY_MAX_AGE_SECS", "3600"))
    notify_url = os.getenv("LEDGER_NOTIFY_URL", "")
    notify_timeout_secs = float(os.getenv("LEDGER_NOTIFY_TIMEOUT_SECS", "5"))
    scheduler_enabled = _env_flag("LEDGER_SCHEDULER_ENABLED")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        cron_secret=cron_secret,
        identity_secret=identity_secret,
        identity_max_age_secs=identity_max_age_secs,
        notify_url=notify_url,
        notify_timeout_secs=notify_timeout_secs,
        scheduler_enabled=scheduler_enabled,
    )
