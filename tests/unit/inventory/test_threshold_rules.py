"""
Alert Threshold Rules Unit Tests

Pure evaluation of alert conditions for a stock level.
"""
import pytest

from microservices.inventory_service.alert_engine import evaluate_thresholds
from microservices.inventory_service.models import AlertConfig, AlertPriority, AlertType
from tests.fixtures import make_stock_level

pytestmark = pytest.mark.unit


def _active(level, config=None):
    conditions = evaluate_thresholds(level, config or AlertConfig())
    return {c.alert_type for c in conditions if c.active}


class TestEvaluateThresholds:

    def test_every_type_is_reported(self):
        conditions = evaluate_thresholds(make_stock_level(on_hand=50), AlertConfig())
        assert [c.alert_type for c in conditions] == [
            AlertType.OUT_OF_STOCK,
            AlertType.LOW_STOCK,
            AlertType.REORDER_POINT,
            AlertType.OVERSTOCK,
        ]

    def test_fully_reserved_is_out_of_stock(self):
        level = make_stock_level(on_hand=4, reserved=4, reorder_point=10)
        assert _active(level) == {AlertType.OUT_OF_STOCK}

    @pytest.mark.parametrize("on_hand,expected", [
        (11, set()),
        (10, {AlertType.LOW_STOCK}),
        (9, {AlertType.LOW_STOCK}),
        (1, {AlertType.LOW_STOCK}),
        (0, {AlertType.OUT_OF_STOCK}),
    ])
    def test_reorder_point_drives_low_stock_without_separate_threshold(self, on_hand, expected):
        assert _active(make_stock_level(on_hand=on_hand, reorder_point=10)) == expected

    @pytest.mark.parametrize("on_hand,expected", [
        (21, set()),
        (20, {AlertType.LOW_STOCK}),
        (11, {AlertType.LOW_STOCK}),
        (10, {AlertType.REORDER_POINT}),
        (0, {AlertType.OUT_OF_STOCK}),
    ])
    def test_separate_low_stock_band(self, on_hand, expected):
        config = AlertConfig(low_stock_threshold=20)
        assert _active(make_stock_level(on_hand=on_hand, reorder_point=10), config) == expected

    def test_overstock_compares_on_hand(self):
        level = make_stock_level(on_hand=101, reserved=60, maximum_stock=100)
        conditions = {c.alert_type: c for c in evaluate_thresholds(level, AlertConfig())}

        overstock = conditions[AlertType.OVERSTOCK]
        assert overstock.active is True
        assert overstock.current_value == 101
        assert overstock.priority == AlertPriority.LOW

    def test_no_overstock_without_maximum(self):
        assert AlertType.OVERSTOCK not in _active(make_stock_level(on_hand=10_000))
