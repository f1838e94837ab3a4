"""
Mileage chain engine.

Orchestrates the chain domain over one AsyncSession:

- writes (insert, update, delete, recover, cascade correction, repairs) run
  under the vehicle's chain lock as load -> validate -> write -> commit
- audits (validation without auto-fix, continuity analysis, breaks, previews)
  read one ordered snapshot without locking
- every exposed operation emits one audit entry once its outcome is known
"""

import logging
from dataclasses import replace
from datetime import date
from typing import AsyncIterator, Iterable, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from mileage_chain.app.core.exceptions import (
    AppException,
    ChainLockTimeoutError,
    HardInvariantViolation,
    InvalidTripDatesError,
    NonPositiveDistanceError,
    ResourceNotFoundError,
)
from mileage_chain.app.core.tenant import TenantContext
from mileage_chain.app.domain.chain.auditor import ChainAuditor, ChainFinding
from mileage_chain.app.domain.chain.continuity import ContinuityCheck, ContinuityValidator
from mileage_chain.app.domain.chain.deletion_guard import DeletionGuard
from mileage_chain.app.domain.chain.entries import (
    ActiveTrip,
    SoftDeletedTrip,
    from_row,
    naive_utc,
    utc_now,
)
from mileage_chain.app.domain.chain.mileage import MileageCalculator
from mileage_chain.app.models.trip import Trip
from mileage_chain.app.models.trip_enums import (
    CalculationMethod,
    DeletionOutcome,
    GapClassification,
    IssueType,
)
from mileage_chain.app.schemas.chain import (
    ChainBreak,
    ChainIssue,
    ChainRebuildResult,
    ContinuityAnalysis,
)
from mileage_chain.app.schemas.trip import (
    CascadeAffectedTrip,
    CascadeCorrectionResult,
    CascadePreviewItem,
    ContinuityCheckResponse,
    DeletionImpactResponse,
    DeletionResult,
    RecalculationResult,
    RecoveryResult,
    TripCreate,
    TripResponse,
    TripUpdate,
    TripWriteResult,
)
from mileage_chain.app.services.audit import AuditAction, AuditEntry, AuditRecorder
from mileage_chain.app.services.chain_locking import ChainLockManager
from mileage_chain.app.services.trip_store import LoadedChain, TripStore

logger = logging.getLogger("mileage.chain")

CHAIN_FIELDS = ("vehicle_id", "trip_start_date", "trip_end_date", "start_km", "end_km")
DATE_FIELDS = ("trip_start_date", "trip_end_date")


class MileageChainEngine:
    """Entry point for every mileage chain operation of one request."""

    def __init__(
        self,
        db: AsyncSession,
        audit: AuditRecorder,
        locks: ChainLockManager,
        validator: ContinuityValidator = None,
        guard: DeletionGuard = None,
        calculator: MileageCalculator = None,
        auditor: ChainAuditor = None,
    ):
        self.db = db
        self.store = TripStore(db)
        self.audit = audit
        self.locks = locks
        self.validator = validator or ContinuityValidator()
        self.guard = guard or DeletionGuard()
        self.calculator = calculator or MileageCalculator()
        self.auditor = auditor or ChainAuditor(validator=self.validator)

    # Writes

    async def insert_or_update_trip(
        self,
        ctx: TenantContext,
        payload: Union[TripCreate, TripUpdate],
        trip_id: Optional[int] = None,
    ) -> TripWriteResult:
        if trip_id is None:
            return await self.insert_trip(ctx, payload)
        return await self.update_trip(ctx, trip_id, payload)

    async def insert_trip(self, ctx: TenantContext, payload: TripCreate) -> TripWriteResult:
        """
        Validate and store a new trip.

        Every rejection below is audited as TRIP_WRITE_REJECTED before it propagates.

        Raises:
            HardInvariantViolation: the trip would break the chain (nothing is written)
            ChainLockTimeoutError: the vehicle's chain stayed busy
        """
        candidate = ActiveTrip(
            id=None,
            owner_id=ctx.owner_id,
            vehicle_id=payload.vehicle_id,
            trip_serial_number=payload.trip_serial_number,
            trip_start_date=naive_utc(payload.trip_start_date),
            trip_end_date=naive_utc(payload.trip_end_date),
            start_km=payload.start_km,
            end_km=payload.end_km,
            refueling_done=payload.refueling_done,
            fuel_quantity=payload.fuel_quantity,
            calculated_kmpl=None,
        )

        try:
            async with self.locks.hold(ctx, candidate.vehicle_id):
                chain = await self.store.load_chain(ctx, candidate.vehicle_id)
                check = self.validator.validate(chain.index, candidate)

                row = Trip(
                    owner_id=ctx.owner_id,
                    vehicle_id=candidate.vehicle_id,
                    trip_serial_number=candidate.trip_serial_number,
                    trip_start_date=candidate.trip_start_date,
                    trip_end_date=candidate.trip_end_date,
                    start_km=candidate.start_km,
                    end_km=candidate.end_km,
                    refueling_done=candidate.refueling_done,
                    fuel_quantity=candidate.fuel_quantity,
                )
                await self.store.add(row)
                chain.add(row)

                mileage = self._refresh_mileage(chain, row.id, [candidate.trip_end_date])
                await self.db.commit()
        except AppException as e:
            await self._reject(ctx, None, candidate, e)
            raise

        await self.db.refresh(row)
        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.TRIP_CREATED,
            entity_id=row.id,
            classification=check.classification.value,
            severity=check.severity,
            new_values=from_row(row).snapshot(),
            tags=_continuity_tags(check),
            message=check.message,
        ))

        return self._write_result(row, check, mileage, created=True)

    async def update_trip(self, ctx: TenantContext, trip_id: int, changes: TripUpdate) -> TripWriteResult:
        """
        Apply a partial update to an active trip.

        A move to another vehicle locks both chains. The successor check only
        applies when end_km changes; larger corrections go through
        cascade_odometer_correction.

        Clearing refueling_done also clears calculated_kmpl.

        Raises:
            ResourceNotFoundError: no active trip with this id for the tenant
            InvalidTripDatesError: the trip would end before it starts
            HardInvariantViolation: the change would break the chain
        """
        fields = changes.model_dump(exclude_unset=True)
        for name in DATE_FIELDS:
            if fields.get(name) is not None:
                fields[name] = naive_utc(fields[name])
        # Explicit nulls only make sense for the optional columns
        fields = {k: v for k, v in fields.items() if v is not None or k in ("trip_serial_number", "fuel_quantity")}

        candidate = None

        try:
            row = await self._active_row(ctx, trip_id)
            target_vehicle = fields.get("vehicle_id", row.vehicle_id)
            async with self.locks.hold_many(ctx, {row.vehicle_id, target_vehicle}):
                row = await self._active_row(ctx, trip_id)
                before = from_row(row)
                candidate = replace(before, **fields)

                if candidate.trip_end_date < candidate.trip_start_date:
                    raise InvalidTripDatesError(
                        candidate.label,
                        candidate.trip_start_date.isoformat(),
                        candidate.trip_end_date.isoformat(),
                    )

                chain = await self.store.load_chain(ctx, candidate.vehicle_id)
                touches_chain = any(getattr(candidate, name) != getattr(before, name) for name in CHAIN_FIELDS)
                if touches_chain:
                    check = self.validator.validate(
                        chain.index, candidate, end_km_changed=candidate.end_km != before.end_km
                    )
                else:
                    check = self.validator.inspect(chain.index, candidate)

                for name, value in fields.items():
                    setattr(row, name, value)
                if not row.refueling_done:
                    row.calculated_kmpl = None
                await self.db.flush()

                chain.rows[row.id] = row
                chain.reindex()

                positions = [candidate.trip_end_date]
                if candidate.vehicle_id == before.vehicle_id:
                    positions.append(before.trip_end_date)
                mileage = self._refresh_mileage(chain, row.id, positions)

                if candidate.vehicle_id != before.vehicle_id:
                    # The old chain lost a trip; its next refueling may need a new anchor
                    old_chain = await self.store.load_chain(ctx, before.vehicle_id)
                    mileage += self._refresh_mileage(old_chain, None, [before.trip_end_date])

                await self.db.commit()
        except AppException as e:
            await self._reject(ctx, trip_id, candidate, e)
            raise

        await self.db.refresh(row)
        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.TRIP_UPDATED,
            entity_id=row.id,
            classification=check.classification.value,
            severity=check.severity,
            old_values=before.snapshot(),
            new_values=from_row(row).snapshot(),
            tags=_continuity_tags(check),
            message=check.message,
        ))

        return self._write_result(row, check, mileage, created=False)

    async def delete_trip(self, ctx: TenantContext, trip_id: int) -> DeletionResult:
        """
        Route a delete through the deletion guard.

        A refueling trip that is the last fuel baseline for later trips is
        soft-deleted instead of removed. After a hard delete, later trips pick
        up their new anchor on the next recalculation.
        """
        entry = None

        try:
            row = await self._active_row(ctx, trip_id)
            async with self.locks.hold(ctx, row.vehicle_id):
                chain = await self.store.load_chain(ctx, row.vehicle_id)
                entry = chain.entry(trip_id)
                if entry is None:
                    raise ResourceNotFoundError("Trip", trip_id)

                row = chain.rows[trip_id]
                impact = self.guard.assess(chain.index, entry)

                if impact.outcome == DeletionOutcome.SOFT_DELETED:
                    row.deleted_at = utc_now()
                    row.deletion_reason = impact.deletion_reason
                    row.deleted_by = ctx.actor_id
                    await self.db.commit()
                    deleted_at = row.deleted_at
                else:
                    await self.store.delete(row)
                    await self.db.commit()
                    deleted_at = None
        except AppException as e:
            await self._reject(ctx, trip_id, entry, e)
            raise

        soft = impact.outcome == DeletionOutcome.SOFT_DELETED
        if soft:
            logger.warning("Trip %s soft deleted: %s", entry.label, impact.deletion_reason)

        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.TRIP_DELETION_PREVENTED if soft else AuditAction.TRIP_DELETED,
            entity_id=trip_id,
            classification=impact.outcome.value,
            severity="warning" if soft else "info",
            old_values=entry.snapshot(),
            new_values=impact.as_dict(),
            tags=[f"impact:{impact.impact_level.value}"],
            message=impact.message,
        ))

        return DeletionResult(
            trip_id=trip_id,
            outcome=impact.outcome.value,
            deleted_at=deleted_at,
            deletion_reason=impact.deletion_reason,
            impact=DeletionImpactResponse(**impact.as_dict()),
            message=(
                f"Trip {entry.label} soft deleted: {impact.message}" if soft
                else f"Trip {entry.label} deleted. {impact.message}"
            ),
        )

    async def recover_trip(self, ctx: TenantContext, trip_id: int, reason: str) -> RecoveryResult:
        """
        Return a soft-deleted trip to its chain.

        Never raises for a missing or active trip; the result reports it. The
        trip is re-validated against the chain as it is now, since other
        trips may have been recorded in its slot meanwhile.
        """
        row = await self.store.get_row(ctx, trip_id)
        if row is None or row.deleted_at is None:
            return await self._recovery_failed(ctx, trip_id, "Trip not found or not deleted", reason)

        rejection = None
        try:
            async with self.locks.hold(ctx, row.vehicle_id):
                row = await self.store.get_row(ctx, trip_id)
                variant = from_row(row) if row is not None else None
                if not isinstance(variant, SoftDeletedTrip):
                    await self.db.rollback()
                    return await self._recovery_failed(ctx, trip_id, "Trip not found or not deleted", reason)

                chain = await self.store.load_chain(ctx, row.vehicle_id)
                restored = variant.restored()
                try:
                    check = self.validator.validate(chain.index, restored, end_km_changed=True)
                except HardInvariantViolation as e:
                    await self.db.rollback()
                    rejection = e
                else:
                    row.deleted_at = None
                    row.deletion_reason = None
                    row.deleted_by = None
                    await self.db.flush()
                    chain.add(row)
                    self._refresh_mileage(chain, row.id, [restored.trip_end_date])
                    await self.db.commit()
        except ChainLockTimeoutError as e:
            await self.db.rollback()
            await self._recovery_failed(ctx, trip_id, e.message, reason, classification=e.classification)
            raise

        if rejection is not None:
            return await self._recovery_failed(
                ctx, trip_id, f"Cannot recover trip {variant.label}: {rejection.message}", reason,
                classification=rejection.classification,
            )

        await self.db.refresh(row)
        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.TRIP_RECOVERED,
            entity_id=trip_id,
            classification=check.classification.value,
            old_values=variant.snapshot(),
            new_values={"recovery_reason": reason, **from_row(row).snapshot()},
            tags=["trip_recovery", "soft_delete_reversal"],
            message=reason,
        ))

        return RecoveryResult(
            success=True,
            message=f"Trip {variant.label} successfully recovered",
            trip=TripResponse.model_validate(row),
        )

    async def cascade_odometer_correction(
        self,
        ctx: TenantContext,
        trip_id: int,
        new_end_km: int,
        reason: str,
    ) -> CascadeCorrectionResult:
        """
        Correct a trip's end_km and shift every later trip by the same delta.

        One TripCorrection row is stored per touched trip, and refueling trips
        among them are recalculated, all in one transaction.
        """
        entry = None

        try:
            row = await self._active_row(ctx, trip_id)
            async with self.locks.hold(ctx, row.vehicle_id):
                chain = await self.store.load_chain(ctx, row.vehicle_id)
                entry = chain.entry(trip_id)
                if entry is None:
                    raise ResourceNotFoundError("Trip", trip_id)
                if new_end_km <= entry.start_km:
                    raise NonPositiveDistanceError(entry.label, entry.start_km, new_end_km)

                delta = new_end_km - entry.end_km
                downstream = chain.index.downstream(entry.trip_end_date, exclude_id=trip_id) if delta else []

                chain.rows[trip_id].end_km = new_end_km
                self.store.record_correction(
                    trip_id, "end_km", str(entry.end_km), str(new_end_km),
                    reason, affects_subsequent_trips=True, corrected_by=ctx.actor_id,
                )

                affected = []
                for trip in downstream:
                    shifted = chain.rows[trip.id]
                    shifted.start_km = trip.start_km + delta
                    shifted.end_km = trip.end_km + delta
                    self.store.record_correction(
                        trip.id, "odometer_cascade",
                        f"{trip.start_km}-{trip.end_km}",
                        f"{shifted.start_km}-{shifted.end_km}",
                        reason, affects_subsequent_trips=True, corrected_by=ctx.actor_id,
                    )
                    affected.append(CascadeAffectedTrip(
                        trip_id=trip.id,
                        trip_serial_number=trip.trip_serial_number,
                        old_start_km=trip.start_km,
                        new_start_km=shifted.start_km,
                        old_end_km=trip.end_km,
                        new_end_km=shifted.end_km,
                    ))
                await self.db.flush()
                chain.reindex()

                mileage = [
                    self._apply_mileage(chain, trip.id)
                    for trip in [entry] + downstream
                    if trip.refueling_done
                ]
                await self.db.commit()
        except AppException as e:
            await self._reject(ctx, trip_id, entry, e)
            raise

        message = (
            f"Corrected trip {entry.label} end KM from {entry.end_km} to {new_end_km}; "
            f"{len(affected)} subsequent trips shifted by {delta:+d} km"
        )
        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.ODOMETER_CASCADE_CORRECTED,
            entity_id=trip_id,
            classification="cascade_correction",
            severity="warning" if affected else "info",
            old_values={"end_km": entry.end_km},
            new_values={
                "end_km": new_end_km,
                "delta_km": delta,
                "affected_trip_ids": [a.trip_id for a in affected],
            },
            tags=["odometer_correction"],
            message=f"{message}. Reason: {reason}",
        ))

        return CascadeCorrectionResult(
            success=True,
            trip_id=trip_id,
            old_end_km=entry.end_km,
            new_end_km=new_end_km,
            delta_km=delta,
            affected_trips_count=len(affected),
            affected_trips=affected,
            mileage=mileage,
            message=message,
        )

    # Mileage

    async def recalculate_mileage(self, ctx: TenantContext, trip_id: int, force: bool = False) -> RecalculationResult:
        """
        Recompute km/L for one refueling trip.

        Never raises for a well-formed request: a missing trip, a
        non-refueling trip or a bad fuel quantity come back as
        success=False with the stored value untouched.
        """
        row = await self.store.get_row(ctx, trip_id)
        if row is None or row.deleted_at is not None:
            result = RecalculationResult(
                trip_id=trip_id,
                success=False,
                method=CalculationMethod.ERROR.value,
                message="Trip not found or access denied",
            )
        else:
            try:
                async with self.locks.hold(ctx, row.vehicle_id):
                    chain = await self.store.load_chain(ctx, row.vehicle_id)
                    if chain.entry(trip_id) is None:
                        result = RecalculationResult(
                            trip_id=trip_id,
                            success=False,
                            method=CalculationMethod.ERROR.value,
                            message="Trip not found or access denied",
                        )
                    else:
                        result = self._apply_mileage(chain, trip_id, force=force)
                    await self.db.commit()
            except ChainLockTimeoutError as e:
                await self._busy(ctx, AuditAction.MILEAGE_RECALCULATED, "trip", trip_id, e)
                raise

        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.MILEAGE_RECALCULATED,
            entity_id=trip_id,
            classification=result.method,
            severity="info" if result.success else "warning",
            old_values={"calculated_kmpl": result.old_kmpl},
            new_values={
                "calculated_kmpl": result.new_kmpl,
                "anchor_trip_id": result.anchor_trip_id,
                "updated": result.updated,
                "force": force,
            },
            message=result.message,
        ))
        return result

    async def rebuild_mileage_chain(
        self,
        ctx: TenantContext,
        vehicle_id: int,
        recalculate_all: bool = False,
    ) -> ChainRebuildResult:
        """Recompute every active refueling trip of a vehicle, in chain order."""
        try:
            async with self.locks.hold(ctx, vehicle_id):
                chain = await self.store.load_chain(ctx, vehicle_id)
                results = [
                    self._apply_mileage(chain, trip.id, force=recalculate_all)
                    for trip in chain.index.refueling_trips()
                ]
                await self.db.commit()
        except ChainLockTimeoutError as e:
            await self._busy(ctx, AuditAction.MILEAGE_CHAIN_REBUILT, "vehicle", vehicle_id, e)
            raise

        updated = sum(1 for r in results if r.updated)
        status = f"Processed {len(chain.index)} trips, updated {updated} refueling calculations"

        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.MILEAGE_CHAIN_REBUILT,
            entity_type="vehicle",
            entity_id=vehicle_id,
            classification="rebuild",
            new_values={
                "trips_processed": len(chain.index),
                "refueling_trips_updated": updated,
                "recalculate_all": recalculate_all,
            },
            message=status,
        ))

        return ChainRebuildResult(
            vehicle_id=vehicle_id,
            trips_processed=len(chain.index),
            refueling_trips_updated=updated,
            chain_status=status,
        )

    # Audits

    async def validate_chain(
        self,
        ctx: TenantContext,
        vehicle_id: int,
        auto_fix: bool = False,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> AsyncIterator[ChainIssue]:
        """
        Stream chain issues for a vehicle.

        Without auto_fix this reads one snapshot and takes no lock. With
        auto_fix the repairs are applied and committed under the chain lock
        before anything is yielded. Large gaps are only ever reported.

        The audit entry is emitted before the first issue is yielded, so a
        consumer that stops early still leaves one.
        """
        if not auto_fix:
            chain = await self.store.load_chain(ctx, vehicle_id)
            await self.db.commit()
            issues = [
                _issue(finding, fix_applied=False, fix_result=finding.default_fix_result)
                for finding in self.auditor.scan(chain.index.ordered(date_from, date_to))
            ]
        else:
            try:
                async with self.locks.hold(ctx, vehicle_id):
                    chain = await self.store.load_chain(ctx, vehicle_id)
                    findings = list(self.auditor.scan(chain.index.ordered(date_from, date_to)))
                    issues = [self._apply_fix(chain, finding) for finding in findings]
                    await self.db.commit()
            except ChainLockTimeoutError as e:
                await self._busy(ctx, AuditAction.CHAIN_VALIDATED, "vehicle", vehicle_id, e)
                raise

        found = [i for i in issues if i.issue_type != IssueType.NO_ISSUES.value]
        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.CHAIN_VALIDATED,
            entity_type="vehicle",
            entity_id=vehicle_id,
            classification="issues_found" if found else IssueType.NO_ISSUES.value,
            severity="warning" if found else "info",
            new_values={
                "auto_fix": auto_fix,
                "date_from": date_from.isoformat() if date_from else None,
                "date_to": date_to.isoformat() if date_to else None,
                "issue_count": len(found),
                "fixes_applied": sum(1 for i in found if i.fix_applied),
            },
            message=f"Chain validation found {len(found)} issues",
        ))

        for issue in issues:
            yield issue

    async def analyze_continuity(
        self,
        ctx: TenantContext,
        vehicle_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> ContinuityAnalysis:
        chain = await self.store.load_chain(ctx, vehicle_id)
        await self.db.commit()

        report = self.auditor.analyze_continuity(
            chain.index.ordered(date_from, date_to),
            analysis_date=date_to or utc_now().date(),
        )
        analysis = ContinuityAnalysis(vehicle_id=vehicle_id, **vars(report))

        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.CONTINUITY_ANALYZED,
            entity_type="vehicle",
            entity_id=vehicle_id,
            classification=f"score:{analysis.continuity_score}",
            new_values=analysis.model_dump(mode="json"),
            message="; ".join(analysis.recommendations) or None,
        ))
        return analysis

    async def detect_chain_breaks(self, ctx: TenantContext, vehicle_id: int) -> List[ChainBreak]:
        chain = await self.store.load_chain(ctx, vehicle_id)
        await self.db.commit()

        breaks = [
            ChainBreak(
                break_location=b.break_location,
                trip_before_id=b.before.id,
                trip_before_serial=b.before.trip_serial_number,
                trip_after_id=b.after.id,
                trip_after_serial=b.after.trip_serial_number,
                gap_km=b.gap_km,
                gap_type=b.gap_type.value,
                suggested_action=b.suggested_action,
            )
            for b in self.auditor.detect_breaks(chain.index.ordered())
        ]

        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.CHAIN_BREAKS_DETECTED,
            entity_type="vehicle",
            entity_id=vehicle_id,
            classification="breaks_found" if breaks else "continuous",
            severity="warning" if breaks else "info",
            new_values={"break_count": len(breaks)},
            message=f"{len(breaks)} chain breaks detected",
        ))
        return breaks

    async def preview_cascade_impact(
        self,
        ctx: TenantContext,
        trip_id: int,
        new_end_km: int,
        limit: int = 10,
    ) -> List[CascadePreviewItem]:
        """Read-only view of what cascade_odometer_correction would do to later trips."""
        row = await self._active_row(ctx, trip_id)
        chain = await self.store.load_chain(ctx, row.vehicle_id)
        await self.db.commit()

        entry = chain.entry(trip_id)
        if entry is None:
            raise ResourceNotFoundError("Trip", trip_id)

        delta = new_end_km - entry.end_km
        return [
            CascadePreviewItem(
                trip_id=trip.id,
                trip_serial_number=trip.trip_serial_number,
                trip_start_date=trip.trip_start_date,
                current_start_km=trip.start_km,
                new_start_km=trip.start_km + delta,
                current_end_km=trip.end_km,
                new_end_km=trip.end_km + delta,
            )
            for trip in chain.index.downstream(entry.trip_end_date, exclude_id=trip_id)[:limit]
        ]

    async def get_trip(self, ctx: TenantContext, trip_id: int, include_deleted: bool = False) -> Trip:
        row = await self.store.get_row(ctx, trip_id)
        if row is None or (row.deleted_at is not None and not include_deleted):
            raise ResourceNotFoundError("Trip", trip_id)
        return row

    # Helpers

    async def _active_row(self, ctx: TenantContext, trip_id: int) -> Trip:
        row = await self.store.get_row(ctx, trip_id)
        if row is None or row.deleted_at is not None:
            raise ResourceNotFoundError("Trip", trip_id)
        return row

    def _apply_mileage(self, chain: LoadedChain, trip_id: int, force: bool = False) -> RecalculationResult:
        """Compute one trip's km/L against `chain` and write it to the row if needed."""
        entry = chain.entry(trip_id)
        computation = self.calculator.compute(chain.index, entry)

        if not computation.ok:
            return RecalculationResult(
                trip_id=trip_id,
                success=False,
                old_kmpl=entry.calculated_kmpl,
                method=computation.method.value,
                message=computation.error,
            )

        old = entry.calculated_kmpl
        updated = self.calculator.needs_write(old, computation.kmpl, force)
        if updated:
            chain.rows[trip_id].calculated_kmpl = computation.kmpl
            message = f"Mileage recalculated: {computation.kmpl:.2f} km/L using {computation.method.value}"
            if computation.anchor is not None:
                message += f" (from trip {computation.anchor.label})"
        else:
            message = "No recalculation needed - mileage is already correct"

        return RecalculationResult(
            trip_id=trip_id,
            success=True,
            old_kmpl=old,
            new_kmpl=computation.kmpl,
            method=computation.method.value,
            anchor_trip_id=computation.anchor.id if computation.anchor else None,
            updated=updated,
            message=message,
        )

    def _refresh_mileage(
        self,
        chain: LoadedChain,
        trip_id: Optional[int],
        positions: Iterable,
    ) -> List[RecalculationResult]:
        """
        Inline recalculation after a write.

        Covers the written trip when it refuels, and the first refueling trip
        after each position the written trip occupied, whose anchor may have
        changed.
        """
        targets = []
        written = chain.entry(trip_id) if trip_id is not None else None
        if written is not None and written.refueling_done:
            targets.append(written.id)
        for position in positions:
            following = chain.index.next_refueling(position, exclude_id=trip_id)
            if following is not None and following.id not in targets:
                targets.append(following.id)

        results = [self._apply_mileage(chain, target) for target in targets]
        if any(r.updated for r in results):
            chain.reindex()
        return results

    def _apply_fix(self, chain: LoadedChain, finding: ChainFinding) -> ChainIssue:
        if finding.fix is None or finding.trip is None:
            return _issue(finding, fix_applied=False, fix_result=finding.default_fix_result)

        row = chain.rows[finding.trip.id]
        if finding.fix.action == "raise_start_km":
            old_start = row.start_km
            row.start_km = finding.fix.value
            chain.reindex()
            logger.info("Auto-fixed trip %s start KM %s -> %s", finding.trip.label, old_start, finding.fix.value)
            return _issue(
                finding,
                fix_applied=True,
                fix_result=f"Auto-fixed: Adjusted start KM from {old_start} to {finding.fix.value}",
            )

        result = self._apply_mileage(chain, finding.trip.id, force=True)
        if result.updated:
            chain.reindex()
        return _issue(
            finding,
            fix_applied=result.success,
            fix_result="Auto-fixed: Recalculated mileage" if result.success else result.message,
        )

    def _write_result(
        self,
        row: Trip,
        check: ContinuityCheck,
        mileage: List[RecalculationResult],
        created: bool,
    ) -> TripWriteResult:
        warnings = []
        if check.classification in (GapClassification.MODERATE, GapClassification.LARGE):
            warnings.append(check.message)
        warnings.extend(r.message for r in mileage if not r.success)

        return TripWriteResult(
            trip=TripResponse.model_validate(row),
            created=created,
            continuity=ContinuityCheckResponse(**check.as_dict()),
            mileage=mileage,
            warnings=warnings,
        )

    async def _reject(
        self,
        ctx: TenantContext,
        trip_id: Optional[int],
        candidate: Optional[ActiveTrip],
        exc: AppException,
    ) -> None:
        await self.db.rollback()
        logger.info("Rejected write to trip %s: %s", trip_id or "(new)", exc.message)
        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.TRIP_WRITE_REJECTED,
            entity_id=trip_id,
            classification=exc.classification,
            severity="error",
            new_values=candidate.snapshot() if candidate else None,
            tags=[exc.error_code],
            message=exc.message,
        ))

    async def _busy(
        self,
        ctx: TenantContext,
        action: str,
        entity_type: str,
        entity_id: int,
        exc: ChainLockTimeoutError,
    ) -> None:
        """Audit an operation that gave up waiting for its chain lock."""
        await self.db.rollback()
        await self._emit(AuditEntry.for_context(
            ctx,
            action,
            entity_type=entity_type,
            entity_id=entity_id,
            classification=exc.classification,
            severity="error",
            tags=[exc.error_code],
            message=exc.message,
        ))

    async def _recovery_failed(
        self,
        ctx: TenantContext,
        trip_id: int,
        message: str,
        reason: str,
        classification: str = "not_recoverable",
    ) -> RecoveryResult:
        await self._emit(AuditEntry.for_context(
            ctx,
            AuditAction.TRIP_RECOVERY_FAILED,
            entity_id=trip_id,
            classification=classification,
            severity="warning",
            new_values={"recovery_reason": reason},
            message=message,
        ))
        return RecoveryResult(success=False, message=message)

    async def _emit(self, entry: AuditEntry) -> None:
        await self.audit.emit(entry)


def _issue(finding: ChainFinding, fix_applied: bool, fix_result: Optional[str]) -> ChainIssue:
    return ChainIssue(
        issue_type=finding.issue_type.value,
        severity=finding.severity.value,
        trip_id=finding.trip.id if finding.trip else None,
        trip_serial_number=finding.trip.trip_serial_number if finding.trip else None,
        description=finding.description,
        suggested_fix=finding.suggested_fix,
        fix_applied=fix_applied,
        fix_result=fix_result,
    )


def _continuity_tags(check: ContinuityCheck) -> List[str]:
    tags = [f"gap:{check.classification.value}"]
    if check.requires_investigation:
        tags.append("requires_investigation")
    return tags
