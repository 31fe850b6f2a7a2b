"""
Helper utilities
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime read back from the database to aware UTC

    SQLite drops tzinfo on the way out, Postgres keeps it.

    Args:
        value: Datetime or None

    Returns:
        Aware datetime in UTC, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def kes_to_cents(amount_kes: int) -> int:
    """Convert whole shillings to cents"""
    return int(amount_kes) * 100

def cents_to_kes(amount_cents: int) -> int:
    """Convert cents to whole shillings (truncating)"""
    return int(amount_cents) // 100

def generate_order_id(prefix: str) -> str:
    """
    Generate a provider reference

    Args:
        prefix: Rail prefix, e.g. "metchi-w" for wallet payments

    Returns:
        "<prefix>-<uuid4>"
    """
    return f"{prefix}-{uuid.uuid4()}"
