"""Tests for the capacity policy."""

import pytest

from pallet_kernel.domain.capacity import available_space, ensure_capacity, usage_percentage
from pallet_kernel.exceptions import CapacityExceededError


class TestAvailableSpace:
    def test_capacity_minus_occupied(self):
        assert available_space(50, 30) == 20

    def test_unlimited_location(self):
        assert available_space(None, 500) is None


class TestEnsureCapacity:
    def test_exact_fit_allowed(self):
        ensure_capacity("T", 50, 30, 20)

    def test_overflow_rejected(self):
        with pytest.raises(CapacityExceededError) as exc_info:
            ensure_capacity("T", 50, 30, 25)

        err = exc_info.value
        assert (err.requested, err.available, err.capacity) == (25, 20, 50)
        assert err.code == "CAPACITY_EXCEEDED"

    def test_over_occupied_reports_zero_available(self):
        with pytest.raises(CapacityExceededError) as exc_info:
            ensure_capacity("W", 10, 12, 1)
        assert exc_info.value.available == 0

    def test_unlimited_never_raises(self):
        ensure_capacity("DP", None, 10_000, 10_000)


class TestUsagePercentage:
    @pytest.mark.parametrize(
        "capacity,occupied,expected",
        [(100, 0, 0), (100, 45, 45), (3, 1, 33), (50, 50, 100), (None, 7, 0)],
    )
    def test_rounding(self, capacity, occupied, expected):
        assert usage_percentage(capacity, occupied) == expected
