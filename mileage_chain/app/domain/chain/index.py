"""
Ordered index over one vehicle's active trips.

Built once per operation from a single ordered read, then answers every
predecessor / successor / anchor question with a bisect instead of another
query.
"""

from bisect import bisect_left, bisect_right
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, List, Optional, Tuple

from mileage_chain.app.domain.chain.entries import ActiveTrip


def _start_key(trip: ActiveTrip) -> Tuple[datetime, datetime, int]:
    return (trip.trip_start_date, trip.trip_end_date, trip.id or 0)


def _end_key(trip: ActiveTrip) -> Tuple[datetime, datetime, int]:
    return (trip.trip_end_date, trip.trip_start_date, trip.id or 0)


def day_bounds(date_from: Optional[date], date_to: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Turn an inclusive date range into [lower, upper) datetimes."""
    lower = datetime.combine(date_from, time.min) if date_from else None
    upper = datetime.combine(date_to + timedelta(days=1), time.min) if date_to else None
    return lower, upper


class ChainIndex:
    """
    Arena of a vehicle's active trips, sorted two ways.

    - by start date: chain order, successor and downstream lookups
    - by end date: predecessor and previous-anchor lookups
    Refueling trips get their own pair of sorted views.
    """

    def __init__(self, trips: Iterable[ActiveTrip]):
        trips = list(trips)
        self._by_id = {t.id: t for t in trips if t.id is not None}

        self._by_start = sorted(trips, key=_start_key)
        self._start_dates = [t.trip_start_date for t in self._by_start]

        self._by_end = sorted(trips, key=_end_key)
        self._end_dates = [t.trip_end_date for t in self._by_end]

        self._refuels_by_start = [t for t in self._by_start if t.refueling_done]
        self._refuel_start_dates = [t.trip_start_date for t in self._refuels_by_start]

        self._refuels_by_end = [t for t in self._by_end if t.refueling_done]
        self._refuel_end_dates = [t.trip_end_date for t in self._refuels_by_end]

    def __len__(self) -> int:
        return len(self._by_start)

    def __iter__(self) -> Iterator[ActiveTrip]:
        return iter(self._by_start)

    def get(self, trip_id: int) -> Optional[ActiveTrip]:
        return self._by_id.get(trip_id)

    # Chronological neighbours

    def predecessor(self, before: datetime, exclude_id: Optional[int] = None) -> Optional[ActiveTrip]:
        """Most recent trip whose end date is strictly before `before`."""
        pos = bisect_left(self._end_dates, before)
        return _last_excluding(self._by_end, pos, exclude_id)

    def successor(self, after: datetime, exclude_id: Optional[int] = None) -> Optional[ActiveTrip]:
        """Earliest trip whose start date is strictly after `after`."""
        pos = bisect_right(self._start_dates, after)
        return _first_excluding(self._by_start, pos, exclude_id)

    def downstream(self, after: datetime, exclude_id: Optional[int] = None) -> List[ActiveTrip]:
        """Every trip starting strictly after `after`, in chain order."""
        pos = bisect_right(self._start_dates, after)
        return [t for t in self._by_start[pos:] if t.id is None or t.id != exclude_id]

    # Refueling anchors

    def previous_refueling(self, before: datetime, exclude_id: Optional[int] = None) -> Optional[ActiveTrip]:
        """Nearest refueling trip whose end date is strictly before `before`."""
        pos = bisect_left(self._refuel_end_dates, before)
        return _last_excluding(self._refuels_by_end, pos, exclude_id)

    def next_refueling(self, after: datetime, exclude_id: Optional[int] = None) -> Optional[ActiveTrip]:
        """Earliest refueling trip starting strictly after `after`."""
        pos = bisect_right(self._refuel_start_dates, after)
        return _first_excluding(self._refuels_by_start, pos, exclude_id)

    def dependents(self, anchor: ActiveTrip) -> List[ActiveTrip]:
        """
        Non-refueling trips after `anchor` with no refueling trip in between.

        These are the trips whose fuel baseline is `anchor`.
        """
        following = self.next_refueling(anchor.trip_end_date, exclude_id=anchor.id)
        result = []
        for trip in self.downstream(anchor.trip_end_date, exclude_id=anchor.id):
            if following is not None and trip.trip_start_date >= following.trip_start_date:
                break
            if not trip.refueling_done:
                result.append(trip)
        return result

    # Scans

    def ordered(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> List[ActiveTrip]:
        """Trips in chain order, optionally bounded (inclusive) by start date."""
        lower, upper = day_bounds(date_from, date_to)
        lo = bisect_left(self._start_dates, lower) if lower else 0
        hi = bisect_left(self._start_dates, upper) if upper else len(self._by_start)
        return self._by_start[lo:hi]

    def refueling_trips(self) -> List[ActiveTrip]:
        return list(self._refuels_by_start)


def _last_excluding(items: List[ActiveTrip], pos: int, exclude_id: Optional[int]) -> Optional[ActiveTrip]:
    for i in range(pos - 1, -1, -1):
        if exclude_id is None or items[i].id != exclude_id:
            return items[i]
    return None


def _first_excluding(items: List[ActiveTrip], pos: int, exclude_id: Optional[int]) -> Optional[ActiveTrip]:
    for i in range(pos, len(items)):
        if exclude_id is None or items[i].id != exclude_id:
            return items[i]
    return None
