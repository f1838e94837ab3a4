"""
Trip snapshots used by the chain domain.

A stored trip is either ActiveTrip or SoftDeletedTrip. Chain traversal only
ever sees ActiveTrip values, so a soft-deleted row cannot leak into a
predecessor lookup because someone forgot a filter clause.
"""

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Optional, Union

from mileage_chain.app.models.trip import Trip


def naive_utc(value: datetime) -> datetime:
    """Normalise a timestamp to naive UTC, the form trip dates are stored in."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class _TripFields:
    """Fields shared by both variants."""
    id: Optional[int]
    owner_id: int
    vehicle_id: int
    trip_serial_number: Optional[str]
    trip_start_date: datetime
    trip_end_date: datetime
    start_km: int
    end_km: int
    refueling_done: bool
    fuel_quantity: Optional[float]
    calculated_kmpl: Optional[float]

    @property
    def label(self) -> str:
        if self.trip_serial_number:
            return self.trip_serial_number
        return f"#{self.id}" if self.id is not None else "(new trip)"

    @property
    def distance_km(self) -> int:
        return self.end_km - self.start_km

    def snapshot(self) -> dict:
        """JSON-friendly view for audit entries."""
        return {
            "id": self.id,
            "vehicle_id": self.vehicle_id,
            "trip_serial_number": self.trip_serial_number,
            "trip_start_date": self.trip_start_date.isoformat(),
            "trip_end_date": self.trip_end_date.isoformat(),
            "start_km": self.start_km,
            "end_km": self.end_km,
            "refueling_done": self.refueling_done,
            "fuel_quantity": self.fuel_quantity,
            "calculated_kmpl": self.calculated_kmpl,
        }


@dataclass(frozen=True)
class ActiveTrip(_TripFields):
    """A trip that participates in its vehicle's chain. id is None for a not-yet-stored trip."""


@dataclass(frozen=True)
class SoftDeletedTrip(_TripFields):
    """A trip retained for audit and recovery, outside the chain."""
    deleted_at: datetime
    deletion_reason: Optional[str]
    deleted_by: Optional[int]

    def restored(self) -> ActiveTrip:
        """The trip as it would re-enter the chain on recovery."""
        base = {f.name: getattr(self, f.name) for f in fields(_TripFields)}
        return ActiveTrip(**base)

    def snapshot(self) -> dict:
        data = super().snapshot()
        data.update({
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "deletion_reason": self.deletion_reason,
            "deleted_by": self.deleted_by,
        })
        return data


ChainTrip = Union[ActiveTrip, SoftDeletedTrip]


def from_row(row: Trip) -> ChainTrip:
    """Convert a stored row into its tagged variant."""
    base = dict(
        id=row.id,
        owner_id=row.owner_id,
        vehicle_id=row.vehicle_id,
        trip_serial_number=row.trip_serial_number,
        trip_start_date=naive_utc(row.trip_start_date),
        trip_end_date=naive_utc(row.trip_end_date),
        start_km=row.start_km,
        end_km=row.end_km,
        refueling_done=bool(row.refueling_done),
        fuel_quantity=row.fuel_quantity,
        calculated_kmpl=row.calculated_kmpl,
    )
    if row.deleted_at is not None:
        return SoftDeletedTrip(
            **base,
            deleted_at=row.deleted_at,
            deletion_reason=row.deletion_reason,
            deleted_by=row.deleted_by,
        )
    return ActiveTrip(**base)
