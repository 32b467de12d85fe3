"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides the global production-number sequence.  Uses a dedicated
    counter table with row-level locking (``SELECT ... FOR UPDATE``) so
    concurrent task creations never receive the same number.

Invariants enforced:
    - Monotonicity: values are strictly increasing.  The aggregate-max-plus-one
      anti-pattern is never used; the locked counter row is the sole source
      of truth.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via savepoint
      rollback and retry).
"""

from sqlalchemy import String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from pallet_kernel.db.base import Base
from pallet_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Transactional sequence numbers.  Flushes; the caller commits.
    """

    PRODUCTION_NUMBER = "production_number"

    def __init__(self, session: Session):
        self._session = session

    def _locked(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_counter(self, sequence_name: str) -> SequenceCounter:
        """Locked counter row, created at 0 on first use."""
        counter = self._locked(sequence_name)
        if counter is not None:
            return counter

        # A concurrent first use may insert the same name; only the
        # savepoint is lost then, and the winner's row is locked instead.
        try:
            with self._session.begin_nested():
                counter = SequenceCounter(name=sequence_name, current_value=0)
                self._session.add(counter)
            return counter
        except IntegrityError:
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": sequence_name})
            counter = self._locked(sequence_name)
            if counter is None:
                raise
            return counter

    def next_value(self, sequence_name: str) -> int:
        """
        Increment the locked counter and return the new value.

        Values are strictly increasing per name.  The row stays locked until
        the caller's transaction ends, and a rollback gives the value back.
        """
        counter = self._lock_counter(sequence_name)
        counter.current_value = SequenceCounter.current_value + 1
        self._session.flush()
        self._session.refresh(counter)
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def advance_to(self, sequence_name: str, value: int) -> int:
        """
        Raise the counter to at least ``value`` and return it.  Never lowers it.

        Explicit production numbers go through here so automatic numbers
        continue above them.
        """
        counter = self._lock_counter(sequence_name)
        if value > counter.current_value:
            counter.current_value = value
            self._session.flush()
            logger.info("sequence_advanced", extra={"sequence_name": sequence_name, "value": value})
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
