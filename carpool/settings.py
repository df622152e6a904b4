# carpool/settings.py
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .engine.capacity import MAX_CAPACITY

load_dotenv()  # .env di root


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    # === storage ===
    DATABASE_URL: str = "sqlite:///./carpool.db"
    SQL_ECHO: bool = False

    # === transactions ===
    TX_TIMEOUT_SEC: float = 10.0

    # === domain rules ===
    MAX_SEAT_CAPACITY: int = MAX_CAPACITY
    DEFAULT_TIMEZONE: str = "UTC"

    # === logging ===
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        base = cls()
        return cls(
            DATABASE_URL=os.getenv("DATABASE_URL", base.DATABASE_URL),
            SQL_ECHO=_env_bool("SQL_ECHO", base.SQL_ECHO),
            TX_TIMEOUT_SEC=float(os.getenv("TX_TIMEOUT_SEC", base.TX_TIMEOUT_SEC)),
            MAX_SEAT_CAPACITY=int(
                os.getenv("MAX_SEAT_CAPACITY", base.MAX_SEAT_CAPACITY)
            ),
            DEFAULT_TIMEZONE=os.getenv("DEFAULT_TIMEZONE", base.DEFAULT_TIMEZONE),
            LOG_LEVEL=os.getenv("LOG_LEVEL", base.LOG_LEVEL),
        )


settings = Settings.from_env()
