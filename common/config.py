import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass
class AppConfig:
    database_url: str
    secret_key: str
    jwt_access_secret: str
    log_level: str
    currency: str
    client_url: str
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    def checkout_urls(self, order_id: str) -> dict:
        base = self.client_url.rstrip("/")
        return {
            "success_url": f"{base}/checkout/success?orderId={order_id}",
            "cancel_url": f"{base}/checkout/cancel?orderId={order_id}",
        }


SENSITIVE_KEYS = {"SECRET_KEY", "JWT_ACCESS_SECRET", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"}


def validate_currency(value: Optional[str]) -> str:
    if value is not None and not isinstance(value, str):
        raise ValueError("currency must be a string")
    v = (value or "USD").strip().upper()
    if len(v) != 3 or not v.isalpha():
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def _load_settings_file() -> dict:
    try:
        path = Path(__file__).resolve().parents[1] / "data" / "settings.json"
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
            # secrets only come from the environment
            return {k: v for k, v in data.items() if k not in SENSITIVE_KEYS}
    except (OSError, ValueError):
        pass
    return {}


def load_env() -> AppConfig:
    # 設定以 data/settings.json 為主，.env 為後備
    load_dotenv()
    s = _load_settings_file()
    secret_key = os.getenv("SECRET_KEY", "dev_secret")
    return AppConfig(
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/app.db"),
        secret_key=secret_key,
        jwt_access_secret=os.getenv("JWT_ACCESS_SECRET") or secret_key,
        log_level=s.get("LOG_LEVEL") or os.getenv("LOG_LEVEL", "INFO"),
        currency=validate_currency(s.get("CURRENCY") or os.getenv("CURRENCY")),
        client_url=(s.get("CLIENT_URL") or os.getenv("CLIENT_URL") or "http://127.0.0.1:4000").rstrip("/"),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
    )
