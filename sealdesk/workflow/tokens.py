# sealdesk/workflow/tokens.py

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sealdesk.core.config import settings


def issue_signing_token(now: Optional[datetime] = None, hours: Optional[int] = None) -> Tuple[str, datetime]:
    """
    Create a single-use signing token and its expiry
    """
    now = now or datetime.now(timezone.utc)
    expiry_hours = hours if hours is not None else settings.signing_token_expiry_hours
    return str(uuid.uuid4()), now + timedelta(hours=expiry_hours)


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def is_token_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    return as_aware(expires_at) <= (now or datetime.now(timezone.utc))
