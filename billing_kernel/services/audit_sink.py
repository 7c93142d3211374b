"""
Audit sink -- before/after snapshots of billing transitions.

Responsibility:
    Receives one call per state transition and persists it.  The engine
    writes to the sink; how records are stored or shipped is up to the
    sink implementation.

Architecture position:
    Kernel > Services.  Called from the module services inside the same
    session as the transition, so the audit row commits or rolls back
    with it.

Audit relevance:
    ``DatabaseAuditSink`` stores AuditRecord rows.  ``snapshot()`` turns a
    frozen DTO into JSON-safe data (Decimal and UUID as strings, dates in
    ISO form, version tokens in hex).
"""

from __future__ import annotations

import dataclasses
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_record import AuditAction, AuditRecord

logger = get_logger("services.audit_sink")


def snapshot(value: Any) -> Any:
    """Convert a DTO (or nested value) into JSON-serializable data."""
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: snapshot(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, dict):
        return {str(k): snapshot(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [snapshot(v) for v in value]
    return str(value)


@runtime_checkable
class AuditSink(Protocol):
    """Receives before/after snapshots of audited transitions."""

    def record(
        self,
        session: Session,
        *,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor: str,
        before: Any = None,
        after: Any = None,
    ) -> None: ...


class DatabaseAuditSink:
    """Stores audit snapshots as AuditRecord rows in the caller's session."""

    def __init__(self, clock: Clock):
        self._clock = clock

    def record(
        self,
        session: Session,
        *,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor: str,
        before: Any = None,
        after: Any = None,
    ) -> None:
        session.add(
            AuditRecord(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action.value,
                actor=actor,
                occurred_at=self._clock.now(),
                before=snapshot(before),
                after=snapshot(after),
            )
        )
        logger.debug(
            "audit_recorded",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "actor": actor,
            },
        )


class NullAuditSink:
    """Sink that discards every record."""

    def record(self, session: Session, **kwargs: Any) -> None:
        return None
