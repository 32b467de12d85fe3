"""
Pallet code generation.

A pallet code is built from the product code, production number, sequence
index within the task, destination name, a millisecond timestamp, and a
random base-36 suffix.  Uniqueness is best-effort; the ``task_pallets.code``
unique constraint is the final guard.
"""

import re
import secrets
import string

from pallet_kernel.domain.clock import Clock, SystemClock

_ALPHABET = string.digits + string.ascii_lowercase
_UNSAFE = re.compile(r"[^0-9A-Za-z\-]+")


def _slug(value: str) -> str:
    return _UNSAFE.sub("-", value.strip()).strip("-") or "x"


class PalletCodeGenerator:
    """Produces scannable pallet codes for one task at a time."""

    def __init__(self, clock: Clock | None = None, suffix_length: int = 8):
        if suffix_length < 4:
            raise ValueError("suffix_length must be at least 4")
        self._clock = clock or SystemClock()
        self._suffix_length = suffix_length

    def _suffix(self) -> str:
        return "".join(secrets.choice(_ALPHABET) for _ in range(self._suffix_length))

    def generate(
        self,
        product_qr_code: str,
        production_number: int,
        destination_name: str,
        count: int,
        start_sequence: int = 1,
    ) -> list[tuple[int, str]]:
        """Return ``count`` (sequence, code) pairs starting at ``start_sequence``."""
        timestamp = int(self._clock.now().timestamp() * 1000)
        product = _slug(product_qr_code)
        destination = _slug(destination_name)
        return [
            (
                seq,
                f"{product}_{production_number}_{seq}_{destination}_{timestamp}_{self._suffix()}",
            )
            for seq in range(start_sequence, start_sequence + count)
        ]
