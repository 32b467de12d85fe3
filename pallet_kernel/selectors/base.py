"""
Module: pallet_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.  Selectors
    serve the report and label renderers and the driver app's task lists.
Architecture position: Kernel > Selectors.  May import from db/, models/,
    and domain/ (DTOs, pure policies).  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(),
      session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen dataclasses, never
      live ORM instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Guarantees:
        - session is stored as a public attribute for subclass query use.
        - No commit, flush, add, or delete operations are performed.
    """

    def __init__(self, session: Session):
        self.session = session
