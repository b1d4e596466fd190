# backend/fuelops/config.py
from __future__ import annotations
import os
from decimal import Decimal


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fuelops.sqlite3 unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///fuelops.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Delivery compartments whose |variance| / bl_volume exceeds this ratio are DISPUTED
    DELIVERY_VARIANCE_TOLERANCE = Decimal(os.environ.get("DELIVERY_VARIANCE_TOLERANCE", "0.005"))

    # Which completed deliveries count toward a shift's theoretical stock:
    # "shift" = completed between shift open and shift close, "none" = ignored
    SHIFT_DELIVERY_WINDOW = os.environ.get("SHIFT_DELIVERY_WINDOW", "shift")

    REQUIRE_JUSTIFICATION_FOR_STOCK_VARIANCE = _env_bool("REQUIRE_JUSTIFICATION_FOR_STOCK_VARIANCE", False)

    # How long a duplicate request waits for the winner of an idempotency claim
    IDEMPOTENCY_WAIT_SECONDS = float(os.environ.get("IDEMPOTENCY_WAIT_SECONDS", "5"))

    TANK_UPDATE_MAX_ATTEMPTS = int(os.environ.get("TANK_UPDATE_MAX_ATTEMPTS", "3"))

    # Used when a station has no tolerance of its own
    DEFAULT_CASH_VARIANCE_TOLERANCE = Decimal(os.environ.get("DEFAULT_CASH_VARIANCE_TOLERANCE", "5000"))
    DEFAULT_STOCK_VARIANCE_TOLERANCE = Decimal(os.environ.get("DEFAULT_STOCK_VARIANCE_TOLERANCE", "50"))
