"""
SequenceService -- document number allocation via locked counter rows.

Responsibility:
    Allocates invoice and credit note numbers.  Each organization and
    prefix pair owns one counter row, incremented under a row lock
    (``SELECT ... FOR UPDATE``) so two concurrent generations never
    receive the same number.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by the invoice lifecycle manager and the credit note issuer.

Invariants enforced:
    - Numbers are strictly increasing per (org, prefix).  The
      aggregate-max-plus-one pattern is never used; the counter row is
      the sole source of truth.
    - The increment is transactional: a rollback returns the value.

Failure modes:
    - IntegrityError on a concurrent first use of a counter (handled via
      savepoint rollback and retry).
"""

from uuid import UUID

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from billing_kernel.db.base import Base
from billing_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


def format_document_number(prefix: str, value: int, width: int = 6) -> str:
    """Render e.g. ``INV-000042``."""
    return f"{prefix}-{value:0{width}d}"


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Does NOT call ``session.commit()``; the caller controls boundaries.

    Usage:
        seq = SequenceService(session)
        number = seq.next_document_number(org_id, "INV")
    """

    def __init__(self, session: Session, width: int = 6):
        self._session = session
        self._width = width

    @staticmethod
    def counter_name(org_id: UUID, prefix: str) -> str:
        return f"{org_id}:{prefix}"

    def next_document_number(self, org_id: UUID, prefix: str) -> str:
        """Allocate the next ``<prefix>-<NNNNNN>`` number for an organization."""
        value = self.next_value(self.counter_name(org_id, prefix))
        return format_document_number(prefix, value, self._width)

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the counter row, increment it, and return the new value.

        Returns an integer > 0, strictly greater than any value previously
        returned for this name in a committed transaction.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use; another transaction may be creating the same row.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
