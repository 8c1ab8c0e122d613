"""Tests for fractional order allocation and normalization."""

import math

import pytest

from inknote.services.ordering import (ORDER_STEP, get_order_number,
                                       normalize_order_list)


class TestGetOrderNumber:
    """Tests for get_order_number."""

    def test_no_bounds_returns_step(self):
        """With neither bound the default starting value is returned."""
        assert get_order_number() == ORDER_STEP

    def test_only_min_offsets_upwards(self):
        assert get_order_number(min=1000.0) == 2000.0

    def test_only_max_offsets_downwards(self):
        assert get_order_number(max=1000.0) == 0.0
        assert get_order_number(max=0.0) == -1000.0

    def test_midpoint_between_bounds(self):
        """Category C between A(1000) and B(3000) lands on 2000."""
        assert get_order_number(1000.0, 3000.0) == 2000.0

    def test_custom_step(self):
        assert get_order_number(step=10.0) == 10.0
        assert get_order_number(min=5.0, step=10.0) == 15.0

    @pytest.mark.parametrize("low, high", [
        (0.0, 1.0),
        (-5.0, 5.0),
        (1000.0, 1000.5),
        (1e-300, 2e-300),
        (123456.789, 123456.79),
    ])
    def test_value_strictly_inside(self, low, high):
        value = get_order_number(low, high)
        assert value is not None
        assert low < value < high

    def test_adjacent_floats_have_no_room(self):
        """Bounds one ulp apart report no room instead of a bound."""
        low = 1000.0
        high = math.nextafter(low, math.inf)
        assert get_order_number(low, high) is None

    def test_equal_or_inverted_bounds_have_no_room(self):
        assert get_order_number(5.0, 5.0) is None
        assert get_order_number(6.0, 5.0) is None

    def test_only_min_at_precision_limit(self):
        """A step too small to move the bound reports no room."""
        assert get_order_number(min=1e20, step=1.0) is None
        assert get_order_number(max=1e20, step=1.0) is None

    def test_repeated_bisection_eventually_runs_out(self):
        """Bisecting toward one bound ends with None, never a bound value."""
        low, high = 1000.0, 3000.0
        for _ in range(2000):
            value = get_order_number(low, high)
            if value is None:
                break
            assert low < value < high
            high = value
        else:
            pytest.fail("bisection never ran out of room")
        assert math.nextafter(low, math.inf) == high


class TestNormalizeOrderList:
    """Tests for normalize_order_list."""

    def test_evenly_spaced(self):
        assert normalize_order_list(3) == [1000.0, 2000.0, 3000.0]

    def test_empty(self):
        assert normalize_order_list(0) == []

    def test_custom_step(self):
        assert normalize_order_list(4, step=0.5) == [0.5, 1.0, 1.5, 2.0]

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError):
            normalize_order_list(-1)

    def test_resets_fragmented_list(self):
        """After bisection runs out, [A, C, B] renumbers strictly increasing."""
        a, b = 1000.0, 3000.0
        c = a
        high = b
        while True:
            value = get_order_number(a, high)
            if value is None:
                break
            c = high = value
        orders = sorted([a, c, b])
        assert orders == [a, c, b]
        assert normalize_order_list(len(orders)) == [1000.0, 2000.0, 3000.0]
