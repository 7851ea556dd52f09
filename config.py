import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        bcrypt_rounds: int,
        admin_email: Optional[str] = None,
        admin_password: Optional[str] = None,
        log_level: str = "INFO",
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.bcrypt_rounds = bcrypt_rounds
        self.admin_email = admin_email
        self.admin_password = admin_password
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("FINANCE_TIMEZONE", "Europe/Paris")
    session_secret = os.getenv(
        "FINANCE_SESSION_SECRET",
        "3f0c2b8e51a94d6c8e7f1a2b9c4d5e6f7a8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d",
    )
    session_max_age_hours = int(os.getenv("FINANCE_SESSION_MAX_AGE_HOURS", "24"))
    bcrypt_rounds = int(os.getenv("FINANCE_BCRYPT_ROUNDS", "12"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        bcrypt_rounds=bcrypt_rounds,
        admin_email=os.getenv("FINANCE_ADMIN_EMAIL") or None,
        admin_password=os.getenv("FINANCE_ADMIN_PASSWORD") or None,
        log_level=os.getenv("FINANCE_LOG_LEVEL", "INFO"),
    )
