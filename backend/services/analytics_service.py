"""Read-only rollups over booking state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

import pandas as pd

from backend.domain.errors import ValidationError
from backend.domain.models import Booking, BookingStatus
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

NOT_AVAILABLE = "N/A"


@dataclass(frozen=True)
class AnalyticsSummary:
    total_bookings: int
    pending_bookings: int
    approved_bookings: int
    rejected_bookings: int
    cancelled_bookings: int
    total_rooms: int
    active_users: int
    most_booked_room: str
    peak_booking_time: str


@dataclass(frozen=True)
class RoomUtilization:
    room_id: int
    room_name: str
    total_bookings: int
    approved_bookings: int
    utilization_percentage: float


class AnalyticsAggregator:
    """Computes dashboard statistics; never mutates state."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def _booking_frame(self, bookings: list[Booking]) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "booking_id": booking.booking_id,
                    "room_id": booking.room_id,
                    "user_id": booking.user_id,
                    "status": booking.status.value,
                    "start_hour": booking.interval.start.hour,
                }
                for booking in bookings
            ],
            columns=["booking_id", "room_id", "user_id", "status", "start_hour"],
        )

    def summary(self) -> AnalyticsSummary:
        frame = self._booking_frame(self._repository.list_bookings())
        rooms = self._repository.list_rooms()
        room_names = {room.room_id: room.name for room in rooms}
        status_counts = frame["status"].value_counts()

        def count(status: BookingStatus) -> int:
            return int(status_counts.get(status.value, 0))

        most_booked_room = NOT_AVAILABLE
        peak_booking_time = NOT_AVAILABLE
        if not frame.empty:
            # Ties resolve to the lowest room id / earliest hour.
            per_room = frame.groupby("room_id").size().sort_index()
            top_room_id = int(per_room.idxmax())
            most_booked_room = room_names.get(top_room_id, f"Room {top_room_id}")
            per_hour = frame.groupby("start_hour").size().sort_index()
            peak_booking_time = f"{int(per_hour.idxmax())}:00"

        logger.info("Analytics summary computed over %s bookings", len(frame))
        return AnalyticsSummary(
            total_bookings=int(len(frame)),
            pending_bookings=count(BookingStatus.PENDING),
            approved_bookings=count(BookingStatus.APPROVED),
            rejected_bookings=count(BookingStatus.REJECTED),
            cancelled_bookings=count(BookingStatus.CANCELLED),
            total_rooms=len(rooms),
            active_users=int(frame["user_id"].nunique()),
            most_booked_room=most_booked_room,
            peak_booking_time=peak_booking_time,
        )

    def room_utilization(self) -> list[RoomUtilization]:
        """Approved share of each room's bookings, busiest rooms first."""
        frame = self._booking_frame(self._repository.list_bookings())
        rooms = pd.DataFrame(
            [{"room_id": room.room_id, "room_name": room.name} for room in self._repository.list_rooms()],
            columns=["room_id", "room_name"],
        )
        if rooms.empty:
            return []
        if frame.empty:
            return [
                RoomUtilization(
                    room_id=int(row.room_id),
                    room_name=str(row.room_name),
                    total_bookings=0,
                    approved_bookings=0,
                    utilization_percentage=0.0,
                )
                for row in rooms.itertuples(index=False)
            ]

        frame["approved"] = (frame["status"] == BookingStatus.APPROVED.value).astype(int)
        per_room = frame.groupby("room_id").agg(
            total_bookings=("booking_id", "count"),
            approved_bookings=("approved", "sum"),
        )
        stats = rooms.merge(per_room, how="left", left_on="room_id", right_index=True)
        stats[["total_bookings", "approved_bookings"]] = (
            stats[["total_bookings", "approved_bookings"]].fillna(0).astype(int)
        )
        totals = stats["total_bookings"].where(stats["total_bookings"] > 0)
        stats["utilization_percentage"] = (
            (stats["approved_bookings"] * 100.0 / totals).fillna(0.0).round(2)
        )
        stats = stats.sort_values(
            by=["total_bookings", "room_id"],
            ascending=[False, True],
            kind="mergesort",
        )
        return [
            RoomUtilization(
                room_id=int(row.room_id),
                room_name=str(row.room_name),
                total_bookings=int(row.total_bookings),
                approved_bookings=int(row.approved_bookings),
                utilization_percentage=float(row.utilization_percentage),
            )
            for row in stats.itertuples(index=False)
        ]

    def bookings_report(
        self,
        *,
        start_date: date,
        end_date: date,
        user_id: Optional[int] = None,
        room_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        """Bookings in ``[start_date, end_date]`` sorted by date and start time."""
        if end_date < start_date:
            raise ValidationError("End date must not be before start date")
        bookings = self._repository.list_bookings(
            user_id=user_id,
            room_id=room_id,
            status=status,
            start_date=start_date,
            end_date=end_date,
        )
        logger.info("Booking report built with %s rows", len(bookings))
        return bookings
