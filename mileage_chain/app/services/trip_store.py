"""
Trip store: tenant-scoped reads and targeted writes of trip rows.

Every query filters on owner_id from the TenantContext. Chain reads return
a LoadedChain, which pairs the ORM rows (for writing) with a ChainIndex of
their ActiveTrip snapshots (for validation and lookups).
"""

from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mileage_chain.app.core.tenant import TenantContext
from mileage_chain.app.domain.chain.entries import ActiveTrip, from_row
from mileage_chain.app.domain.chain.index import ChainIndex
from mileage_chain.app.models.trip import Trip
from mileage_chain.app.models.trip_correction import TripCorrection


class LoadedChain:
    """One vehicle's active rows plus the index built from them."""

    def __init__(self, rows: Iterable[Trip]):
        self.rows: Dict[int, Trip] = {row.id: row for row in rows}
        self.reindex()

    def reindex(self) -> None:
        """Rebuild the index after rows were mutated in place."""
        entries = (from_row(row) for row in self.rows.values())
        self.index = ChainIndex(e for e in entries if isinstance(e, ActiveTrip))

    def add(self, row: Trip) -> None:
        self.rows[row.id] = row
        self.reindex()

    def entry(self, trip_id: int) -> Optional[ActiveTrip]:
        return self.index.get(trip_id)


class TripStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_chain(self, ctx: TenantContext, vehicle_id: int) -> LoadedChain:
        """Ordered read of a vehicle's active trips."""
        result = await self.db.execute(
            select(Trip)
            .where(
                Trip.owner_id == ctx.owner_id,
                Trip.vehicle_id == vehicle_id,
                Trip.deleted_at.is_(None),
            )
            .order_by(Trip.trip_start_date, Trip.trip_end_date, Trip.id)
            .execution_options(populate_existing=True)
        )
        return LoadedChain(result.scalars().all())

    async def get_row(self, ctx: TenantContext, trip_id: int) -> Optional[Trip]:
        """Any trip of the tenant, soft-deleted included."""
        result = await self.db.execute(
            select(Trip)
            .where(Trip.id == trip_id, Trip.owner_id == ctx.owner_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, row: Trip) -> Trip:
        self.db.add(row)
        await self.db.flush()
        return row

    async def delete(self, row: Trip) -> None:
        await self.db.delete(row)
        await self.db.flush()

    def record_correction(
        self,
        trip_id: int,
        field_name: str,
        old_value: str,
        new_value: str,
        reason: Optional[str],
        affects_subsequent_trips: bool,
        corrected_by: Optional[int],
    ) -> TripCorrection:
        correction = TripCorrection(
            trip_id=trip_id,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
            correction_reason=reason,
            affects_subsequent_trips=affects_subsequent_trips,
            corrected_by=corrected_by,
        )
        self.db.add(correction)
        return correction
