from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from backend.app.db.session import SessionLocal
from backend.app.main import app
from backend.app.models import BOOKING_CONFIRMED, Booking
from backend.app.routers.dependencies import get_clock, get_config


pytestmark = pytest.mark.asyncio(loop_scope="module")

WEEKDAYS = [
    {"day_of_week": day, "start_time": "09:00", "end_time": "11:00"} for day in range(5)
]


@pytest.fixture(autouse=True)
def api_overrides(config, clock):
    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_clock] = lambda: clock
    yield
    app.dependency_overrides.clear()


def _client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def test_weekly_windows_endpoints():
    async with _client() as client:
        replaced = await client.put("/api/v1/admin/availability/windows", json=WEEKDAYS)
        assert replaced.status_code == 200, replaced.text
        assert [w["day_of_week"] for w in replaced.json()] == [0, 1, 2, 3, 4]

        saturday = await client.put(
            "/api/v1/admin/availability/windows/5",
            json={"start_time": "10:00", "end_time": "13:00"},
        )
        assert saturday.status_code == 200, saturday.text

        duplicate = await client.put(
            "/api/v1/admin/availability/windows",
            json=[WEEKDAYS[0], WEEKDAYS[0]],
        )
        assert duplicate.status_code == 422
        assert duplicate.json()["error"] == "invalid_request"

        bad_day = await client.put(
            "/api/v1/admin/availability/windows/9",
            json={"start_time": "10:00", "end_time": "13:00"},
        )
        assert bad_day.status_code == 422

        listed = await client.get("/api/v1/admin/availability/windows")
    assert [w["day_of_week"] for w in listed.json()] == [0, 1, 2, 3, 4, 5]
    assert listed.json()[5]["start_time"] == "10:00"


async def test_booking_type_endpoints(today):
    async with _client() as client:
        created = await client.post(
            "/api/v1/admin/booking-types",
            json={"name": "Cake Pickup", "duration_minutes": 30, "max_bookings_per_day": 3},
        )
        assert created.status_code == 201, created.text
        body = created.json()
        assert body["slug"] == "cake-pickup"

        duplicate = await client.post("/api/v1/admin/booking-types", json={"name": "Cake pickup"})
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "conflict"

        updated = await client.put(
            f"/api/v1/admin/booking-types/{body['id']}",
            json={"name": "Cake Pickup", "duration_minutes": 45},
        )
        assert updated.status_code == 200
        assert updated.json()["duration_minutes"] == 45
        assert updated.json()["max_bookings_per_day"] is None

        missing = await client.put("/api/v1/admin/booking-types/9999", json={"name": "Ghost"})
        assert missing.status_code == 404

        async with SessionLocal() as session:
            async with session.begin():
                session.add(
                    Booking(
                        booking_type_id=body["id"],
                        slot_date=today + timedelta(days=3),
                        slot_time="09:00",
                        status=BOOKING_CONFIRMED,
                    )
                )

        blocked = await client.delete(f"/api/v1/admin/booking-types/{body['id']}")
        assert blocked.status_code == 409
        assert "1 upcoming booking" in blocked.json()["detail"]

        listed = await client.get("/api/v1/admin/booking-types", params={"active_only": True})
    assert [bt["slug"] for bt in listed.json()] == ["cake-pickup"]


async def test_override_endpoints(today):
    day = today + timedelta(days=8)
    async with _client() as client:
        created = await client.post(
            "/api/v1/admin/overrides",
            json={"date": day.isoformat(), "is_available": False, "reason": "Holiday"},
        )
        assert created.status_code == 201, created.text
        override_id = created.json()["id"]
        assert created.json()["created_at"] is not None

        duplicate = await client.post(
            "/api/v1/admin/overrides",
            json={"date": day.isoformat(), "is_available": True, "start_time": "10:00", "end_time": "12:00"},
        )
        assert duplicate.status_code == 409

        no_hours = await client.post(
            "/api/v1/admin/overrides",
            json={"date": (day + timedelta(days=1)).isoformat(), "is_available": True},
        )
        assert no_hours.status_code == 422

        listed = await client.get(
            "/api/v1/admin/overrides", params={"start": today.isoformat(), "end": day.isoformat()}
        )
        assert [o["id"] for o in listed.json()] == [override_id]

        removed = await client.delete(f"/api/v1/admin/overrides/{override_id}")
        assert removed.status_code == 204
        again = await client.delete(f"/api/v1/admin/overrides/{override_id}")
        assert again.status_code == 404


async def test_ledger_endpoints(today):
    day = today + timedelta(days=1)
    async with _client() as client:
        capacity = await client.put(
            "/api/v1/admin/ledger/capacity",
            json={"date": day.isoformat(), "time": "09:00", "capacity": 4},
        )
        assert capacity.status_code == 200, capacity.text
        assert capacity.json() == {"date": day.isoformat(), "time": "09:00", "capacity": 4, "booked": 0, "remaining": 4}

        async with SessionLocal() as session:
            async with session.begin():
                session.add_all(
                    [
                        Booking(slot_date=day, slot_time="09:00", status=BOOKING_CONFIRMED),
                        Booking(slot_date=day, slot_time="09:30", status=BOOKING_CONFIRMED),
                    ]
                )

        synced = await client.post(
            "/api/v1/admin/ledger/sync", json={"start": day.isoformat(), "end": day.isoformat()}
        )
        assert synced.status_code == 200, synced.text
        assert synced.json() == {"updated": 1, "created": 1, "clamped": 0}

        shrink = await client.put(
            "/api/v1/admin/ledger/capacity",
            json={"date": day.isoformat(), "time": "09:00", "capacity": 0},
        )
        assert shrink.status_code == 409

        listed = await client.get("/api/v1/admin/ledger", params={"start": day.isoformat(), "end": day.isoformat()})
    assert [(e["time"], e["capacity"], e["booked"]) for e in listed.json()] == [("09:00", 4, 1), ("09:30", 2, 1)]


async def test_availability_endpoints(today):
    async with _client() as client:
        await client.put("/api/v1/admin/availability/windows", json=WEEKDAYS)
        saturday = today + timedelta(days=3)

        hours = await client.get("/api/v1/availability/hours", params={"date": today.isoformat()})
        assert hours.json() == {"date": today.isoformat(), "hours": {"start": "09:00", "end": "11:00"}}
        closed = await client.get("/api/v1/availability/hours", params={"date": saturday.isoformat()})
        assert closed.json()["hours"] is None

        slots = await client.get("/api/v1/availability/slots", params={"date": today.isoformat()})
        assert slots.json()["slots"] == ["09:00", "09:30", "10:00", "10:30"]

        bookable = await client.get("/api/v1/availability/bookable", params={"date": saturday.isoformat()})
        assert bookable.json()["bookable"] is False
        assert bookable.json()["reason"] == "closed"
        assert bookable.json()["earliest_date"] == today.isoformat()

        next_day = await client.get("/api/v1/availability/next", params={"date": saturday.isoformat()})
        assert next_day.json()["date"] == today.isoformat()

        calendar = await client.get(
            "/api/v1/availability/calendar",
            params={"start": today.isoformat(), "end": (today + timedelta(days=6)).isoformat()},
        )
        assert calendar.status_code == 200, calendar.text
        days = calendar.json()["days"]
        assert len(days) == 7
        assert [d["bookable"] for d in days] == [True, True, True, False, False, True, True]
        assert days[0]["slots"][0] == {
            "time": "09:00", "capacity": 2, "booked": 0, "remaining": 2, "available": True,
        }

        unknown = await client.get(
            "/api/v1/availability/slots", params={"date": today.isoformat(), "booking_type": "nope"}
        )
        assert unknown.status_code == 422

        too_long = await client.get(
            "/api/v1/availability/calendar",
            params={"start": today.isoformat(), "end": (today + timedelta(days=200)).isoformat()},
        )
        assert too_long.status_code == 422


async def test_next_available_is_404_when_nothing_opens():
    async with _client() as client:
        await client.put("/api/v1/admin/availability/windows", json=[])
        response = await client.get("/api/v1/availability/next")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
