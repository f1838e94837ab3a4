"""
Trip API Endpoints.

Trip writes go through the mileage chain engine, which validates odometer
continuity under the vehicle's chain lock and keeps fuel efficiency current.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from mileage_chain.app.core.dependencies import get_chain_engine
from mileage_chain.app.core.guards import get_tenant_context, require_chain_admin
from mileage_chain.app.core.jwt import TokenClaims
from mileage_chain.app.core.tenant import TenantContext
from mileage_chain.app.db.session import get_db
from mileage_chain.app.schemas.trip import (
    AuditLogResponse,
    CascadeCorrectionRequest,
    CascadeCorrectionResult,
    CascadePreviewItem,
    DeletionResult,
    RecalculationResult,
    RecoveryRequest,
    RecoveryResult,
    TripCreate,
    TripResponse,
    TripUpdate,
    TripWriteResult,
)
from mileage_chain.app.services.audit import get_audit_trail
from mileage_chain.app.services.mileage_engine import MileageChainEngine

router = APIRouter(prefix="/trips", tags=["Trips"])


@router.post("", response_model=TripWriteResult, status_code=status.HTTP_201_CREATED)
async def create_trip(
    payload: TripCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    """
    Record a trip.

    Rejected with 422 when end_km <= start_km (ERR_CHAIN_001) or when the
    trip starts below its predecessor's end reading (ERR_CHAIN_002).
    Moderate and large gaps are accepted and reported in `warnings`.
    """
    return await engine.insert_trip(ctx, payload)


@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip(
    trip_id: int = Path(..., description="Trip ID"),
    include_deleted: bool = Query(False, description="Also return soft-deleted trips"),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    return await engine.get_trip(ctx, trip_id, include_deleted=include_deleted)


@router.patch("/{trip_id}", response_model=TripWriteResult)
async def update_trip(
    payload: TripUpdate,
    trip_id: int = Path(..., description="Trip ID"),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    """
    Update a trip.

    Raising end_km past the next trip's start_km is rejected with 409
    (ERR_CHAIN_003); use the cascade-correction endpoint instead.
    """
    return await engine.update_trip(ctx, trip_id, payload)


@router.delete("/{trip_id}", response_model=DeletionResult)
async def delete_trip(
    trip_id: int = Path(..., description="Trip ID"),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    """
    Delete a trip.

    A refueling trip that later trips depend on for their fuel baseline, with
    no later refueling trip to take over, is soft-deleted instead
    (outcome=soft_deleted) and can be restored via /recover.
    """
    return await engine.delete_trip(ctx, trip_id)


@router.post("/{trip_id}/recalculate-mileage", response_model=RecalculationResult)
async def recalculate_mileage(
    trip_id: int = Path(..., description="Trip ID"),
    force: bool = Query(False, description="Write even when the stored value is within tolerance"),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    return await engine.recalculate_mileage(ctx, trip_id, force=force)


@router.post("/{trip_id}/recover", response_model=RecoveryResult)
async def recover_trip(
    payload: RecoveryRequest,
    trip_id: int = Path(..., description="Trip ID"),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    """Restore a soft-deleted trip. Reports success=false instead of failing."""
    return await engine.recover_trip(ctx, trip_id, payload.reason)


@router.post("/{trip_id}/cascade-correction", response_model=CascadeCorrectionResult)
async def cascade_correction(
    payload: CascadeCorrectionRequest,
    trip_id: int = Path(..., description="Trip ID"),
    claims: TokenClaims = Depends(require_chain_admin),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    """
    Correct a trip's end reading and shift all later trips by the same amount
    (Fleet Owner / Admin only).
    """
    return await engine.cascade_odometer_correction(ctx, trip_id, payload.new_end_km, payload.reason)


@router.get("/{trip_id}/cascade-preview", response_model=List[CascadePreviewItem])
async def cascade_preview(
    trip_id: int = Path(..., description="Trip ID"),
    new_end_km: int = Query(..., gt=0, description="Proposed end reading"),
    limit: int = Query(10, ge=1, le=100),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    return await engine.preview_cascade_impact(ctx, trip_id, new_end_km, limit=limit)


@router.get("/{trip_id}/audit-trail", response_model=List[AuditLogResponse])
async def trip_audit_trail(
    trip_id: int = Path(..., description="Trip ID"),
    limit: int = Query(100, ge=1, le=500),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db)
):
    """Audit entries for a trip, newest first. Entries outlive hard-deleted trips."""
    return await get_audit_trail(db, owner_id=ctx.owner_id, entity_type="trip", entity_id=str(trip_id), limit=limit)
