# ----------------------------
# Config & Constants
# ----------------------------
from __future__ import annotations
import os
from dataclasses import dataclass


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    store_backend: str = "json"             # 'json' | 'sql'
    data_file: str = "./data/store.json"
    database_url: str = "sqlite:///./data/shop.db"
    credential_backend: str = "memory"      # 'memory' | 'redis'
    redis_url: str = "redis://127.0.0.1:6379"
    admin_password: str = "change-me"
    admin_token_ttl_seconds: int = 12 * 3600
    mock_secret: str = "supersecret"
    mock_webhook_url: str = "http://localhost:8000/payment-callback"
    public_base_url: str = "http://localhost:8000"
    currency: str = "usd"
    max_line_qty: int = 99
    min_price_cents: int = 50               # cents
    external_timeout_seconds: float = 5.0
    log_level: str = "INFO"
    log_json: bool = False
    metrics_url: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            store_backend=os.getenv("STORE_BACKEND", "json").lower(),
            data_file=os.getenv("DATA_FILE", "./data/store.json"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./data/shop.db"),
            credential_backend=os.getenv(
                "CREDENTIAL_BACKEND", "memory"
            ).lower(),
            redis_url=os.getenv("REDIS_URL", "redis://127.0.0.1:6379"),
            admin_password=os.getenv("ADMIN_PASSWORD", "change-me"),
            admin_token_ttl_seconds=int(
                os.getenv("ADMIN_TOKEN_TTL_SECONDS", str(12 * 3600))
            ),
            mock_secret=os.getenv("MOCK_SECRET", "supersecret"),
            mock_webhook_url=os.getenv(
                "MOCK_WEBHOOK_URL",
                "http://localhost:8000/payment-callback"
            ),
            public_base_url=os.getenv(
                "PUBLIC_BASE_URL", "http://localhost:8000"
            ).rstrip("/"),
            currency=os.getenv("CURRENCY", "usd").lower(),
            max_line_qty=int(os.getenv("MAX_LINE_QTY", "99")),
            min_price_cents=int(os.getenv("MIN_PRICE_CENTS", "50")),
            external_timeout_seconds=float(
                os.getenv("EXTERNAL_TIMEOUT_SECONDS", "5.0")
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON"),
            metrics_url=os.getenv("METRICS_URL", ""),
        )
