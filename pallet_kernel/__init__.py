"""
Pallet Kernel - inventory and task state-transition core.

Tracks pallets of perishable goods moving between production lines,
warehouses, trucks, and delivery points:
- Batch-level inventory per location and product (production number, expiry)
- Capacity enforcement serialized per location
- Task lifecycle with compensating inventory deltas on edit and delete
- Driver scan verification of pickup, pallet, and delivery codes
"""

__version__ = "0.1.0"
