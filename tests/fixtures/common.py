"""
Common/Shared Fixtures

Base factories and generators used across test layers.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional


def make_item_id() -> str:
    """Generate a unique item ID"""
    return f"item_test_{uuid.uuid4().hex[:12]}"


def make_location_id() -> str:
    """Generate a unique location ID"""
    return f"loc_test_{uuid.uuid4().hex[:12]}"


def make_holder_ref() -> str:
    """Generate a unique reservation holder (cart / order) reference"""
    return f"order_test_{uuid.uuid4().hex[:12]}"


class FakeClock:
    """Controllable time source for reservation expiry and alert snoozing"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> datetime:
        self.now = self.now + delta
        return self.now
