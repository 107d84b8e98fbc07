import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Force-load .env from the project root (reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./bookings.db"
    stripe_secret_key: Optional[str] = None
    payment_currency: str = "SGD"
    gateway_timeout_seconds: int = 10
    gateway_max_retries: int = 0
    webhook_secret: Optional[str] = None
    webhook_tolerance_seconds: int = 300
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv(dotenv_path=ENV_PATH)
        return cls(
            database_url=os.getenv("DATABASE_URL") or cls.database_url,
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            payment_currency=(os.getenv("PAYMENT_CURRENCY") or cls.payment_currency).upper(),
            gateway_timeout_seconds=_int_env("GATEWAY_TIMEOUT_SECONDS", cls.gateway_timeout_seconds),
            gateway_max_retries=_int_env("GATEWAY_MAX_RETRIES", cls.gateway_max_retries),
            webhook_secret=os.getenv("WEBHOOK_SECRET") or None,
            webhook_tolerance_seconds=_int_env("WEBHOOK_TOLERANCE_SECONDS", cls.webhook_tolerance_seconds),
            jwt_secret=os.getenv("JWT_SECRET") or None,
            jwt_algorithm=os.getenv("JWT_ALGORITHM") or cls.jwt_algorithm,
            log_level=(os.getenv("LOG_LEVEL") or cls.log_level).upper(),
            log_json=os.getenv("LOG_JSON", "1") not in ("0", "false", "False"),
        )
