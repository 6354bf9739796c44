"""
Centralized configuration for the storefront pricing service.
Values come from the environment (``.env`` is loaded first).
"""
from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    """Read a boolean flag ("true"/"1"/"yes" are truthy)."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("true", "1", "yes", "on")


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name)
    try:
        return Decimal((raw or default).strip())
    except InvalidOperation:
        return Decimal(default)


def sanitize_code(value: Optional[Any]) -> Optional[str]:
    """Normalize raw coupon codes (strip whitespace, upper-case)."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.upper()


# ---- Money / display ----
CURRENCY_SYMBOL: str = os.getenv("CURRENCY_SYMBOL") or "₹"

# ---- Bundle rules ----
MIN_BUNDLE_ITEMS: int = env_int("MIN_BUNDLE_ITEMS", 2)
BUNDLE_PRICE_CEILING: Decimal = env_decimal("BUNDLE_PRICE_CEILING", "1000000")

# ---- Coupon rules ----
COUPON_CODE_MIN_LENGTH: int = env_int("COUPON_CODE_MIN_LENGTH", 3)
COUPON_CODE_MAX_LENGTH: int = env_int("COUPON_CODE_MAX_LENGTH", 50)
COUPON_FETCH_DEBOUNCE_MS: int = env_int("COUPON_FETCH_DEBOUNCE_MS", 300)

# ---- Storefront backend ----
BACKEND_API_URL: str = (os.getenv("BACKEND_API_URL") or "http://localhost:5000").rstrip("/")
BACKEND_TIMEOUT_SECONDS: float = env_float("BACKEND_TIMEOUT_SECONDS", 15.0)
BACKEND_MAX_RETRIES: int = env_int("BACKEND_MAX_RETRIES", 2)

# ---- Gateway access token ----
GATEWAY_ENABLED: bool = env_bool("GATEWAY_ENABLED", False)
GATEWAY_HEADER_NAME: str = os.getenv("GATEWAY_HEADER_NAME") or "x-gateway-token"

# ---- Delivery data persistence ----
DELIVERY_CHECK_TTL_HOURS: int = env_int("DELIVERY_CHECK_TTL_HOURS", 24)

# ---- HTTP service ----
CORS_ORIGINS: list = [
    origin.strip()
    for origin in (os.getenv("CORS_ORIGINS") or "http://localhost:3000,http://localhost:5000").split(",")
    if origin.strip()
] or ["http://localhost:3000"]
RATE_LIMIT_ENABLED: bool = env_bool("RATE_LIMIT_ENABLED", True)
RATE_LIMIT_RPM: int = env_int("RATE_LIMIT_RPM", 120)
INIT_DB_ON_STARTUP: bool = env_bool("INIT_DB_ON_STARTUP", False)
LOG_LEVEL: str = (os.getenv("LOG_LEVEL") or "INFO").upper()
