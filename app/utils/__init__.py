"""Utilities package"""

from .validators import normalize_kenyan_phone
from .helpers import utcnow, as_utc, kes_to_cents, cents_to_kes, generate_order_id
from .pagination import LimitOffsetParams

__all__ = [
    "normalize_kenyan_phone",
    "utcnow",
    "as_utc",
    "kes_to_cents",
    "cents_to_kes",
    "generate_order_id",
    "LimitOffsetParams",
]
