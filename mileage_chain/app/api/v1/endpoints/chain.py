"""
Vehicle Chain API Endpoints.

Validation, continuity scoring, break detection and rebuild of one
vehicle's mileage chain.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from mileage_chain.app.core.dependencies import get_chain_engine, get_current_user
from mileage_chain.app.core.guards import get_tenant_context, require_chain_admin
from mileage_chain.app.core.exceptions import InsufficientPermissionsError
from mileage_chain.app.core.jwt import TokenClaims
from mileage_chain.app.core.tenant import TenantContext
from mileage_chain.app.schemas.chain import (
    ChainBreak,
    ChainIssue,
    ChainRebuildResult,
    ContinuityAnalysis,
)
from mileage_chain.app.services.mileage_engine import MileageChainEngine

router = APIRouter(prefix="/vehicles/{vehicle_id}/chain", tags=["Mileage Chain"])


@router.get("/issues", response_model=List[ChainIssue])
async def validate_chain(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    auto_fix: bool = Query(False, description="Apply safe repairs (Fleet Owner / Admin only)"),
    date_from: Optional[date] = Query(None, description="First trip start date to include"),
    date_to: Optional[date] = Query(None, description="Last trip start date to include"),
    claims: TokenClaims = Depends(get_current_user),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    """
    Validate a vehicle's chain.

    Returns a single `no_issues` entry when the chain is clean. With
    auto_fix, odometer regressions are repaired where possible and missing
    mileage is recalculated; large gaps are only ever reported.
    """
    if auto_fix and not claims.can_repair_chains:
        raise InsufficientPermissionsError("Auto-fix requires Fleet Owner or Admin role")

    return [
        issue
        async for issue in engine.validate_chain(
            ctx, vehicle_id, auto_fix=auto_fix, date_from=date_from, date_to=date_to
        )
    ]


@router.get("/continuity", response_model=ContinuityAnalysis)
async def analyze_continuity(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    """Gap counts, a 0-100 continuity score (null with no trips) and recommendations."""
    return await engine.analyze_continuity(ctx, vehicle_id, date_from=date_from, date_to=date_to)


@router.get("/breaks", response_model=List[ChainBreak])
async def detect_chain_breaks(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    return await engine.detect_chain_breaks(ctx, vehicle_id)


@router.post("/rebuild", response_model=ChainRebuildResult)
async def rebuild_mileage_chain(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    recalculate_all: bool = Query(False, description="Rewrite every refueling trip, not only stale ones"),
    claims: TokenClaims = Depends(require_chain_admin),
    ctx: TenantContext = Depends(get_tenant_context),
    engine: MileageChainEngine = Depends(get_chain_engine)
):
    """Recompute mileage for every refueling trip of the vehicle (Fleet Owner / Admin only)."""
    return await engine.rebuild_mileage_chain(ctx, vehicle_id, recalculate_all=recalculate_all)
