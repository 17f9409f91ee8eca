"""
Inventory Models Unit Tests

Validators, computed fields and request model constraints.
"""
from datetime import timedelta

import pytest
from pydantic import ValidationError

from microservices.inventory_service.models import (
    AlertConfig,
    AlertStatus,
    AlertType,
    BatchAdjustEntry,
    ExtendRequest,
    MovementFilter,
    ReservationStatus,
    StockLevel,
)
from tests.fixtures import make_alert, make_reservation, make_stock_level

pytestmark = pytest.mark.unit


class TestStockLevel:

    def test_available_is_on_hand_minus_reserved(self):
        level = make_stock_level(on_hand=10, reserved=3)
        assert level.available == 7
        assert level.model_dump()["available"] == 7

    def test_reserved_above_on_hand_rejected(self):
        with pytest.raises(ValidationError):
            StockLevel(item_id="item_a", location_id="loc_a", on_hand=2, reserved=3)

    def test_negative_on_hand_rejected(self):
        with pytest.raises(ValidationError):
            StockLevel(item_id="item_a", location_id="loc_a", on_hand=-1)


class TestStockReservation:

    def test_terminal_statuses(self):
        assert make_reservation(status=ReservationStatus.ACTIVE).is_terminal is False
        for status in (ReservationStatus.COMMITTED, ReservationStatus.RELEASED, ReservationStatus.EXPIRED):
            assert make_reservation(status=status).is_terminal is True

    def test_is_expired_only_when_active_and_past_ttl(self):
        reservation = make_reservation(ttl=timedelta(minutes=5))
        assert reservation.is_expired(reservation.expires_at) is False
        assert reservation.is_expired(reservation.expires_at + timedelta(seconds=1)) is True

        released = make_reservation(status=ReservationStatus.RELEASED, ttl=timedelta(minutes=5))
        assert released.is_expired(released.expires_at + timedelta(hours=1)) is False

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            make_reservation(quantity=0)


class TestAlerts:

    def test_open_statuses(self):
        assert make_alert(status=AlertStatus.SNOOZED).is_open is True
        assert make_alert(status=AlertStatus.RESOLVED).is_open is False
        assert make_alert(status=AlertStatus.CANCELLED).is_open is False

    def test_channels_for(self):
        config = AlertConfig(routing={"out_of_stock": ["email", "sms"]})
        assert config.channels_for(AlertType.OUT_OF_STOCK) == ["email", "sms"]
        assert config.channels_for(AlertType.OVERSTOCK) == []


class TestRequestModels:

    def test_batch_entry_needs_exactly_one_of_delta_or_quantity(self):
        assert BatchAdjustEntry(item_id="a", location_id="l", delta=-2).delta == -2
        assert BatchAdjustEntry(item_id="a", location_id="l", quantity=0).quantity == 0
        with pytest.raises(ValidationError):
            BatchAdjustEntry(item_id="a", location_id="l")
        with pytest.raises(ValidationError):
            BatchAdjustEntry(item_id="a", location_id="l", delta=1, quantity=1)

    def test_extend_requires_positive_minutes(self):
        with pytest.raises(ValidationError):
            ExtendRequest(additional_minutes=0)

    @pytest.mark.parametrize("limit", [0, 1001])
    def test_filter_limit_bounds(self, limit):
        with pytest.raises(ValidationError):
            MovementFilter(limit=limit)
