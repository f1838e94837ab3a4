"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from mileage_chain.app.api.v1.endpoints import trips, chain

router = APIRouter()

# Trip writes, recalculation, recovery and corrections
router.include_router(trips.router)

# Per-vehicle chain audits and rebuild
router.include_router(chain.router)
