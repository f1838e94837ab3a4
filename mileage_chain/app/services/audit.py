"""
Audit logging service for chain operations.

Every exposed engine operation emits one AuditEntry. Entries go to an
AuditSink; the AuditRecorder in front of it logs and continues when the
sink fails, so an audit outage never blocks a trip write.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mileage_chain.app.core.reliability import CircuitBreaker, CircuitOpenError
from mileage_chain.app.core.tenant import TenantContext
from mileage_chain.app.models.audit_log import AuditLog

logger = logging.getLogger("mileage.audit")


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    TRIP_CREATED = "TRIP_CREATED"
    TRIP_UPDATED = "TRIP_UPDATED"
    TRIP_WRITE_REJECTED = "TRIP_WRITE_REJECTED"

    TRIP_DELETED = "TRIP_DELETED"
    TRIP_DELETION_PREVENTED = "TRIP_DELETION_PREVENTED"
    TRIP_RECOVERED = "TRIP_RECOVERED"
    TRIP_RECOVERY_FAILED = "TRIP_RECOVERY_FAILED"

    MILEAGE_RECALCULATED = "MILEAGE_RECALCULATED"
    MILEAGE_CHAIN_REBUILT = "MILEAGE_CHAIN_REBUILT"

    CHAIN_VALIDATED = "CHAIN_VALIDATED"
    CONTINUITY_ANALYZED = "CONTINUITY_ANALYZED"
    CHAIN_BREAKS_DETECTED = "CHAIN_BREAKS_DETECTED"

    ODOMETER_CASCADE_CORRECTED = "ODOMETER_CASCADE_CORRECTED"


@dataclass
class AuditEntry:
    """One structured audit record, independent of where it is stored."""
    action: str
    owner_id: Optional[int] = None
    actor_id: Optional[int] = None
    actor_username: Optional[str] = None
    entity_type: str = "trip"
    entity_id: Optional[str] = None
    classification: Optional[str] = None
    severity: str = "info"
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    tags: List[str] = field(default_factory=list)
    message: Optional[str] = None

    @classmethod
    def for_context(cls, ctx: TenantContext, action: str, **kwargs) -> "AuditEntry":
        entity_id = kwargs.pop("entity_id", None)
        return cls(
            action=action,
            owner_id=ctx.owner_id,
            actor_id=ctx.actor_id,
            actor_username=ctx.actor_username,
            entity_id=str(entity_id) if entity_id is not None else None,
            **kwargs,
        )


class AuditSink(Protocol):
    """Destination for audit entries."""

    async def write(self, entry: AuditEntry) -> None:
        ...


async def log_event(db: AsyncSession, entry: AuditEntry) -> AuditLog:
    """
    Persist an audit entry.

    Args:
        db: Database session
        entry: Entry to store

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=entry.actor_id,
        actor_username=entry.actor_username,
        owner_id=entry.owner_id,
        action=entry.action,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        classification=entry.classification,
        severity=entry.severity,
        old_values=entry.old_values,
        new_values=entry.new_values,
        tags=entry.tags or None,
        message=entry.message,
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


class DatabaseAuditSink:
    """Writes entries to audit_logs using a session of its own."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def write(self, entry: AuditEntry) -> None:
        async with self.session_factory() as session:
            await log_event(session, entry)


class AuditRecorder:
    """
    Front door for audit emission.

    emit() never raises: sink errors and an open breaker are logged as
    warnings and the entry is dropped.
    """

    def __init__(self, sink: AuditSink, breaker: CircuitBreaker):
        self.sink = sink
        self.breaker = breaker

    async def emit(self, entry: AuditEntry) -> bool:
        try:
            await self.breaker.call(self.sink.write, entry)
            return True
        except CircuitOpenError:
            logger.warning(
                "Audit sink circuit open, dropping %s entry for %s:%s",
                entry.action, entry.entity_type, entry.entity_id,
            )
        except Exception as e:
            logger.warning(
                "Audit sink failed for %s entry for %s:%s: %s",
                entry.action, entry.entity_type, entry.entity_id, e,
            )
        return False


async def get_audit_trail(
    db: AsyncSession,
    owner_id: int,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve a tenant's audit trail with optional filtering.

    Args:
        db: Database session
        owner_id: Tenant to read entries for
        entity_type: Filter by entity type ("trip", "vehicle")
        entity_id: Filter by entity (trip id)
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).where(AuditLog.owner_id == owner_id).order_by(
        desc(AuditLog.timestamp), desc(AuditLog.id)
    )

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
