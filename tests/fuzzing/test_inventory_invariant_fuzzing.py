"""
Hypothesis fuzzing of InventoryService deltas.

Random sequences of positive and negative batch deltas against one
warehouse must keep total_pallets == sum(batches), never leave an empty
batch or inventory behind, and never exceed capacity.  State carries over
between examples; the invariants hold regardless.
"""

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from pallet_kernel.exceptions import CapacityExceededError

deltas = st.lists(
    st.tuples(
        st.integers(min_value=1, max_value=4),
        st.integers(min_value=-15, max_value=15).filter(bool),
    ),
    min_size=1,
    max_size=25,
)


class TestInventoryInvariants:
    @given(steps=deltas)
    @settings(
        max_examples=50,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_deltas_preserve_invariants(
        self, steps, inventory_service, inventory_selector, warehouse, product
    ):
        for pn, delta in steps:
            try:
                inventory_service.apply_delta(
                    warehouse.id,
                    product.id,
                    f"pn-{pn}",
                    delta,
                    production_number=pn,
                )
            except CapacityExceededError:
                assert inventory_selector.occupied(warehouse.id) + delta > 100

        assert inventory_selector.verify_inventory_invariants() == []
        inv = inventory_selector.inventory(warehouse.id, product.id)
        if inv is not None:
            assert inv.total_pallets > 0
            assert all(b.pallet_quantity > 0 for b in inv.batches)
            assert inv.total_pallets <= 100
