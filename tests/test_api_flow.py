from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from fastapi.testclient import TestClient

from app import create_app
from backend.utils.clock import fixed_clock
from backend.utils.config import get_settings


NOW = datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)


def _build_test_client(tmp_path) -> TestClient:
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "api_flow.db",
        utc_offset_minutes=0,
        scheduler_enabled=False,
        seed_demo_rooms=True,
        recurring_horizon_days=7,
    )
    return TestClient(create_app(settings=settings, clock=fixed_clock(NOW)))


def _booking_payload(**overrides) -> dict:
    payload = {
        "roomId": 1,
        "userId": 1,
        "meetingTitle": "Quarterly planning",
        "bookingDate": "2030-01-08",
        "startTime": "09:00",
        "endTime": "10:00",
        "attendeesCount": 6,
    }
    payload.update(overrides)
    return payload


def test_booking_lifecycle_over_http(tmp_path):
    with _build_test_client(tmp_path) as client:
        created = client.post("/bookings", json=_booking_payload())
        assert created.status_code == 201
        body = created.json()
        assert body["success"] is True
        assert body["message"] == "Booking request submitted"
        booking = body["data"]
        assert booking["status"] == "PENDING"
        assert booking["meetingTitle"] == "Quarterly planning"
        assert booking["startTime"] == "09:00:00"
        booking_id = booking["id"]

        clash = client.post("/bookings", json=_booking_payload(userId=2, startTime="09:30", endTime="10:30"))
        assert clash.status_code == 409
        clash_body = clash.json()
        assert clash_body["success"] is False
        assert clash_body["message"] == "Room 1 is already booked on 2030-01-08 from 09:00 to 10:00"
        assert clash_body["data"]["conflictingBookingId"] == booking_id

        adjacent = client.post("/bookings", json=_booking_payload(userId=2, startTime="10:00", endTime="11:00"))
        assert adjacent.status_code == 201

        mine = client.get("/bookings/my-bookings", params={"userId": 1}).json()["data"]
        assert [item["id"] for item in mine] == [booking_id]
        pending = client.get("/bookings/pending").json()["data"]
        assert len(pending) == 2

        approved = client.post(
            "/bookings/approve",
            json={"bookingId": booking_id, "adminId": 42, "approve": True},
        )
        assert approved.status_code == 200
        assert approved.json()["message"] == "Booking approved"
        assert approved.json()["data"]["approvedBy"] == 42

        again = client.post(
            "/bookings/approve",
            json={"bookingId": booking_id, "adminId": 42, "approve": False},
        )
        assert again.status_code == 409
        assert again.json()["success"] is False

        forbidden = client.delete(f"/bookings/{booking_id}", params={"userId": 2})
        assert forbidden.status_code == 403

        cancelled = client.delete(f"/bookings/{booking_id}", params={"userId": 1})
        assert cancelled.status_code == 200
        assert cancelled.json()["data"]["status"] == "CANCELLED"

        fetched = client.get(f"/bookings/{booking_id}").json()["data"]
        assert fetched["status"] == "CANCELLED"
        assert len(client.get("/bookings/all").json()["data"]) == 2


def test_error_envelopes(tmp_path):
    with _build_test_client(tmp_path) as client:
        missing = client.get("/bookings/999")
        assert missing.status_code == 404
        assert missing.json() == {
            "success": False,
            "data": None,
            "message": "Booking 999 not found",
        }

        inverted = client.post("/bookings", json=_booking_payload(startTime="11:00", endTime="10:00"))
        assert inverted.status_code == 400
        assert inverted.json()["success"] is False

        past = client.post("/bookings", json=_booking_payload(bookingDate="2030-01-06"))
        assert past.status_code == 400

        unknown_room = client.post("/bookings", json=_booking_payload(roomId=99))
        assert unknown_room.status_code == 404

        malformed = client.post("/bookings", json={"roomId": 1})
        assert malformed.status_code == 422
        assert malformed.json()["success"] is False
        assert malformed.json()["message"] == "Request validation failed"
        assert isinstance(malformed.json()["data"], list)


def test_recurring_rule_flow(tmp_path):
    with _build_test_client(tmp_path) as client:
        created = client.post(
            "/recurring-bookings",
            json={
                "roomId": 2,
                "userId": 5,
                "meetingTitle": "Team sync",
                "startDate": "2030-01-07",
                "endDate": "2030-01-31",
                "startTime": "15:00",
                "endTime": "15:30",
                "frequency": "WEEKLY",
                "daysOfWeek": [1, 3],
            },
        )
        assert created.status_code == 201
        rule = created.json()["data"]
        assert rule["daysOfWeek"] == [1, 3]
        assert rule["bookingsCreated"] == 0

        missing_days = client.post(
            "/recurring-bookings",
            json={
                "roomId": 2,
                "userId": 5,
                "meetingTitle": "Team sync",
                "startDate": "2030-01-07",
                "endDate": "2030-01-31",
                "startTime": "15:00",
                "endTime": "15:30",
                "frequency": "WEEKLY",
            },
        )
        assert missing_days.status_code == 400

        processed = client.post("/recurring-bookings/process-now")
        assert processed.status_code == 200
        summary = processed.json()["data"]
        assert summary["processedOn"] == "2030-01-07"
        assert summary["created"] == 3
        assert summary["results"][0]["ruleId"] == rule["id"]
        assert summary["results"][0]["errors"] == []

        repeat = client.post("/recurring-bookings/process-now").json()["data"]
        assert repeat["created"] == 0

        fetched = client.get(f"/recurring-bookings/{rule['id']}").json()["data"]
        assert fetched["bookingsCreated"] == 3
        occurrences = client.get(f"/recurring-bookings/{rule['id']}/bookings").json()["data"]
        assert [item["bookingDate"] for item in occurrences] == [
            "2030-01-07",
            "2030-01-09",
            "2030-01-14",
        ]
        mine = client.get("/recurring-bookings/my-rules", params={"userId": 5}).json()["data"]
        assert [item["id"] for item in mine] == [rule["id"]]

        assert client.delete(f"/recurring-bookings/{rule['id']}", params={"userId": 6}).status_code == 403
        deleted = client.delete(f"/recurring-bookings/{rule['id']}", params={"userId": 5})
        assert deleted.status_code == 200
        assert client.get(f"/recurring-bookings/{rule['id']}").status_code == 404
        assert len(client.get("/bookings/my-bookings", params={"userId": 5}).json()["data"]) == 3


def test_reports_and_audit(tmp_path):
    with _build_test_client(tmp_path) as client:
        first = client.post("/bookings", json=_booking_payload()).json()["data"]
        client.post("/bookings", json=_booking_payload(roomId=2, userId=2, attendeesCount=3))
        client.post(
            "/bookings/approve",
            json={"bookingId": first["id"], "adminId": 42, "approve": True},
        )

        summary = client.get("/reports/analytics/summary").json()["data"]
        assert summary["totalBookings"] == 2
        assert summary["approvedBookings"] == 1
        assert summary["totalRooms"] == 5
        assert summary["peakBookingTime"] == "9:00"

        utilization = client.get("/reports/analytics/room-utilization").json()["data"]
        assert utilization[0]["roomId"] == 1
        assert utilization[0]["utilizationPercentage"] == 100.0

        report = client.get(
            "/reports/bookings",
            params={"startDate": "2030-01-01", "endDate": "2030-01-31", "status": "PENDING"},
        ).json()["data"]
        assert [item["roomId"] for item in report] == [2]
        inverted = client.get(
            "/reports/bookings",
            params={"startDate": "2030-01-31", "endDate": "2030-01-01"},
        )
        assert inverted.status_code == 400

        recent = client.get("/audit/recent", params={"limit": 2}).json()["data"]
        assert [entry["action"] for entry in recent] == ["APPROVE", "CREATE"]
        assert client.get("/audit/recent", params={"limit": 0}).status_code == 400

        history = client.get(f"/audit/entity/BOOKING/{first['id']}").json()["data"]
        assert [entry["action"] for entry in history] == ["CREATE", "APPROVE"]
        assert history[1]["userId"] == 42
        assert history[1]["details"] == {"from_status": "PENDING", "to_status": "APPROVED"}

        by_type = client.get("/audit/entity/RECURRING_RULE").json()["data"]
        assert by_type == []

        in_range = client.get(
            "/audit/date-range",
            params={"start": "2030-01-07T00:00:00", "end": "2030-01-07T23:59:59"},
        ).json()["data"]
        assert len(in_range) == 3
        out_of_range = client.get(
            "/audit/date-range",
            params={"start": "2030-01-08T00:00:00", "end": "2030-01-09T00:00:00"},
        ).json()["data"]
        assert out_of_range == []


def test_offset_bearing_times_are_rejected_over_http(tmp_path):
    with _build_test_client(tmp_path) as client:
        assert client.post("/bookings", json=_booking_payload()).status_code == 201

        for start, end in [
            ("09:30:00Z", "10:30:00Z"),
            ("09:00:00+02:00", "10:00:00"),
            ("14:00:00Z", "15:00:00Z"),
        ]:
            rejected = client.post(
                "/bookings",
                json=_booking_payload(userId=2, startTime=start, endTime=end),
            )
            assert rejected.status_code == 422
            assert rejected.json()["success"] is False

        later = client.post("/bookings", json=_booking_payload(userId=2, startTime="14:00", endTime="15:00"))
        assert later.status_code == 201
        clash = client.post("/bookings", json=_booking_payload(userId=3, startTime="09:30", endTime="10:30"))
        assert clash.status_code == 409

        rule = client.post(
            "/recurring-bookings",
            json={
                "roomId": 2,
                "userId": 5,
                "meetingTitle": "Team sync",
                "startDate": "2030-01-07",
                "endDate": "2030-01-31",
                "startTime": "15:00:00Z",
                "endTime": "15:30:00Z",
                "frequency": "DAILY",
            },
        )
        assert rule.status_code == 422
        assert len(client.get("/bookings/all").json()["data"]) == 2
