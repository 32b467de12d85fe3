"""
Tests for FEFO batch allocation (``pallet_kernel.domain.fefo``).

Invariants tested:
- Earliest expiration is consumed first; undated batches come last.
- A batch is split only when it is the last one needed.
- Sum of slices == requested quantity, else InsufficientStockError.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from pallet_kernel.domain.fefo import BatchCandidate, allocate_fefo, order_fefo
from pallet_kernel.exceptions import InsufficientStockError, InvalidQuantityError

D1 = datetime(2024, 3, 1, tzinfo=timezone.utc)
D2 = D1 + timedelta(days=5)
WAREHOUSE = uuid4()
PRODUCT = uuid4()


def _candidate(qty, expires, pn=1, location=WAREHOUSE, key=None):
    return BatchCandidate(
        batch_id=uuid4(),
        location_id=location,
        batch_key=key or f"pn-{pn}",
        production_number=pn,
        pallet_quantity=qty,
        expiration_date=expires,
    )


class TestFefoOrdering:
    def test_withdraw_seven_from_two_batches_of_five(self):
        """B1(d1, 5) and B2(d2, 5): 7 takes all of B1, then 2 of B2."""
        b1 = _candidate(5, D1, pn=1)
        b2 = _candidate(5, D2, pn=2)

        slices = allocate_fefo(PRODUCT, [b2, b1], 7)

        assert [(s.batch_id, s.quantity) for s in slices] == [(b1.batch_id, 5), (b2.batch_id, 2)]
        assert b2.pallet_quantity - slices[1].quantity == 3

    def test_exact_fit_does_not_touch_later_batches(self):
        b1 = _candidate(5, D1, pn=1)
        b2 = _candidate(5, D2, pn=2)

        slices = allocate_fefo(PRODUCT, [b1, b2], 5)

        assert len(slices) == 1
        assert slices[0].batch_id == b1.batch_id

    def test_undated_batches_come_last(self):
        undated = _candidate(10, None, pn=1)
        dated = _candidate(10, D2, pn=2)

        assert order_fefo([undated, dated])[0] is dated

    def test_equal_expiration_breaks_on_production_number(self):
        later_pn = _candidate(3, D1, pn=9)
        earlier_pn = _candidate(3, D1, pn=4)

        slices = allocate_fefo(PRODUCT, [later_pn, earlier_pn], 2)

        assert slices[0].production_number == 4

    def test_spans_warehouses(self):
        other = uuid4()
        b1 = _candidate(2, D1, pn=1, location=other)
        b2 = _candidate(4, D2, pn=2)

        slices = allocate_fefo(PRODUCT, [b2, b1], 4)

        assert [s.location_id for s in slices] == [other, WAREHOUSE]
        assert [s.quantity for s in slices] == [2, 2]


class TestFefoFailures:
    def test_insufficient_stock_reports_available(self):
        with pytest.raises(InsufficientStockError) as exc_info:
            allocate_fefo(PRODUCT, [_candidate(3, D1), _candidate(2, D2)], 6)

        assert exc_info.value.requested == 6
        assert exc_info.value.available == 5

    def test_no_candidates(self):
        with pytest.raises(InsufficientStockError):
            allocate_fefo(PRODUCT, [], 1)

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(InvalidQuantityError):
            allocate_fefo(PRODUCT, [_candidate(3, D1)], quantity)
