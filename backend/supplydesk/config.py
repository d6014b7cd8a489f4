# backend/supplydesk/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/supplydesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///supplydesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Order numbers look like ECO26-0001
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "ECO")
    ORDER_NUMBER_PADDING = _int_env("ORDER_NUMBER_PADDING", 4)

    ORDER_MAX_ITEMS = _int_env("ORDER_MAX_ITEMS", 50)
    ORDER_MAX_QUANTITY = _int_env("ORDER_MAX_QUANTITY", 999)
    ORDER_MAX_NOTES_LENGTH = _int_env("ORDER_MAX_NOTES_LENGTH", 500)
    ORDER_MIN_ADDRESS_LENGTH = _int_env("ORDER_MIN_ADDRESS_LENGTH", 10)

    # Shipping fees and thresholds live here and nowhere else (minor units)
    SHIPPING_FREE_THRESHOLD_CENTS = _int_env("SHIPPING_FREE_THRESHOLD_CENTS", 3_500_000)
    SHIPPING_STANDARD_CENTS = _int_env("SHIPPING_STANDARD_CENTS", 500_000)
    SHIPPING_COURIER_CENTS = _int_env("SHIPPING_COURIER_CENTS", 800_000)
