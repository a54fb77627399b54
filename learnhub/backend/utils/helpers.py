"""
LearnHub Learning Management System
Shared helper utilities
"""

import logging
import secrets
import string
import time
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

from ...config import get_settings

BASE36_ALPHABET = string.digits + string.ascii_uppercase


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging from settings"""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format=settings.LOG_FORMAT
    )


def random_base36(length: int) -> str:
    """Random upper-case base36 string drawn from a CSPRNG"""
    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def generate_certificate_id(now_ms: Optional[int] = None) -> str:
    """CERT-<epoch-ms>-<9 base36 chars>"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"CERT-{now_ms}-{random_base36(9)}"


def generate_verification_code() -> str:
    return random_base36(12)


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round half away from zero, the way grade percentages are published"""
    quantum = Decimal(1).scaleb(-ndigits)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if ndigits == 0 else float(rounded)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def enum_value(value: Any) -> Any:
    """Return the raw value of an Enum member, passing other values through"""
    return getattr(value, "value", value)


__all__ = [
    "setup_logging",
    "random_base36",
    "generate_certificate_id",
    "generate_verification_code",
    "round_half_up",
    "isoformat_or_none",
    "enum_value"
]
