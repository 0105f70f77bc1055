import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from backend.app.core.errors import SlotUnavailable
from backend.app.db.session import SessionLocal
from backend.app.main import app
from backend.app.routers.dependencies import get_clock, get_config
from backend.app.services.reservations import ReservationService
from backend.app.services.rule_store import CalendarRuleStore, WeeklyWindow
from backend.app.services.slot_ledger import SlotLedger


pytestmark = pytest.mark.asyncio(loop_scope="module")


@pytest.fixture
def single_capacity(config):
    return replace(config, default_slot_capacity=1)


@pytest.fixture
def monday(today):
    # TODAY is a Wednesday.
    return today + timedelta(days=5)


@pytest.fixture(autouse=True)
def api_overrides(single_capacity, clock):
    app.dependency_overrides[get_config] = lambda: single_capacity
    app.dependency_overrides[get_clock] = lambda: clock
    yield
    app.dependency_overrides.clear()


async def _monday_mornings_only(clock):
    async with SessionLocal() as session:
        async with session.begin():
            await CalendarRuleStore(session, today=clock).set_weekly_windows(
                [WeeklyWindow(day_of_week=0, start_time="09:00", end_time="12:00")]
            )


async def _booked(slot_date, slot_time):
    async with SessionLocal() as session:
        return await SlotLedger(session).get_booked(slot_date, slot_time)


async def _active_bookings(slot_date, slot_time):
    async with SessionLocal() as session:
        counts = await SlotLedger(session).count_active_bookings(slot_date, slot_date)
    return counts.get((slot_date, slot_time), 0)


def _client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def test_reserve_release_retry_scenario(single_capacity, clock, monday):
    await _monday_mornings_only(clock)

    async with SessionLocal() as session:
        async with session.begin():
            first = await ReservationService(session, single_capacity, today=clock).reserve(monday, "09:00")
    assert (first.date, first.time, first.status) == (monday, "09:00", "confirmed")

    async with SessionLocal() as session:
        with pytest.raises(SlotUnavailable) as excinfo:
            async with session.begin():
                await ReservationService(session, single_capacity, today=clock).reserve(monday, "09:00")
    assert excinfo.value.reason == "slot_full"

    async with SessionLocal() as session:
        async with session.begin():
            service = ReservationService(session, single_capacity, today=clock)
            assert await service.cancel(monday, "09:00")
            assert not await service.cancel(monday, "09:00")
    assert await _booked(monday, "09:00") == 0
    assert await _active_bookings(monday, "09:00") == 0

    async with SessionLocal() as session:
        async with session.begin():
            retry = await ReservationService(session, single_capacity, today=clock).reserve(monday, "09:00")
    assert retry.booking_id != first.booking_id
    assert await _booked(monday, "09:00") == 1
    assert await _active_bookings(monday, "09:00") == 1


async def test_slot_cancel_frees_the_booking_for_sync_and_daily_cap(single_capacity, clock, monday):
    await _monday_mornings_only(clock)
    async with SessionLocal() as session:
        async with session.begin():
            await CalendarRuleStore(session, today=clock).upsert_booking_type(
                name="Sample Box", max_bookings_per_day=1
            )

    async with SessionLocal() as session:
        async with session.begin():
            service = ReservationService(session, single_capacity, today=clock)
            await service.reserve(monday, "09:00", "sample-box")
            assert await service.cancel(monday, "09:00")

    async with SessionLocal() as session:
        async with session.begin():
            ledger = SlotLedger(session)
            await ledger.get_entries_in_range(monday, monday, for_update=True)
            counts = await ledger.count_active_bookings(monday, monday)
            await ledger.sync_from_source(monday, monday, counts, single_capacity.default_slot_capacity)
    assert await _booked(monday, "09:00") == 0

    async with SessionLocal() as session:
        async with session.begin():
            again = await ReservationService(session, single_capacity, today=clock).reserve(
                monday, "09:30", "sample-box"
            )
    assert again.status == "confirmed"
    assert await _active_bookings(monday, "09:00") == 0
    assert await _active_bookings(monday, "09:30") == 1


async def test_slot_cancel_without_booking_rows_releases_the_ledger(single_capacity, clock, monday):
    async with SessionLocal() as session:
        async with session.begin():
            assert await SlotLedger(session).reserve(monday, "10:00", 1)

    async with SessionLocal() as session:
        async with session.begin():
            service = ReservationService(session, single_capacity, today=clock)
            assert await service.cancel(monday, "10:00")
            assert not await service.cancel(monday, "10:00")
    assert await _booked(monday, "10:00") == 0


async def test_reservation_http_flow(clock, monday):
    await _monday_mornings_only(clock)
    payload = {"date": monday.isoformat(), "time": "09:00"}

    async with _client() as client:
        first = await client.post("/api/v1/reservations", json=payload)
        assert first.status_code == 201, first.text
        booking_id = first.json()["booking_id"]
        assert first.json()["status"] == "confirmed"

        second = await client.post("/api/v1/reservations", json=payload)
        assert second.status_code == 409
        assert second.json()["error"] == "slot_unavailable"
        assert second.json()["reason"] == "slot_full"

        cancelled = await client.post(f"/api/v1/reservations/{booking_id}/cancel")
        assert cancelled.status_code == 200, cancelled.text
        assert cancelled.json()["status"] == "cancelled"

        again = await client.post(f"/api/v1/reservations/{booking_id}/cancel")
        assert again.status_code == 200
        assert await _booked(monday, "09:00") == 0

        third = await client.post("/api/v1/reservations", json=payload)
        assert third.status_code == 201, third.text

        released = await client.post("/api/v1/reservations/cancel", json=payload)
        assert released.status_code == 200
        assert released.json() == {"released": True}


async def test_reservation_rejections(clock, today, monday):
    await _monday_mornings_only(clock)

    async with _client() as client:
        past = await client.post(
            "/api/v1/reservations", json={"date": (today - timedelta(days=2)).isoformat(), "time": "09:00"}
        )
        unknown_type = await client.post(
            "/api/v1/reservations",
            json={"date": monday.isoformat(), "time": "09:00", "booking_type": "nope"},
        )
        off_grid = await client.post("/api/v1/reservations", json={"date": monday.isoformat(), "time": "09:15"})
        after_close = await client.post("/api/v1/reservations", json={"date": monday.isoformat(), "time": "12:00"})
        closed_day = await client.post(
            "/api/v1/reservations", json={"date": (monday + timedelta(days=1)).isoformat(), "time": "09:00"}
        )
        malformed = await client.post("/api/v1/reservations", json={"date": monday.isoformat(), "time": "9:00"})
        missing = await client.post("/api/v1/reservations/424242/cancel")

    assert past.status_code == 422
    assert past.json()["error"] == "invalid_request"
    assert unknown_type.status_code == 422
    assert unknown_type.json()["error"] == "invalid_request"
    assert off_grid.status_code == 409
    assert off_grid.json()["reason"] == "outside_hours"
    assert after_close.json()["reason"] == "outside_hours"
    assert closed_day.status_code == 409
    assert closed_day.json()["reason"] == "closed"
    assert malformed.status_code == 422
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"
    assert await _booked(monday, "09:00") == 0


async def test_booking_type_rules_apply(single_capacity, clock, monday):
    await _monday_mornings_only(clock)
    async with SessionLocal() as session:
        async with session.begin():
            store = CalendarRuleStore(session, today=clock)
            await store.upsert_booking_type(name="Consultation", duration_minutes=60, requires_approval=True)
            await store.upsert_booking_type(name="Cake")
            await store.upsert_booking_type(name="Old", is_active=False)

    async with _client() as client:
        pending = await client.post(
            "/api/v1/reservations",
            json={"date": monday.isoformat(), "time": "10:00", "booking_type": "consultation"},
        )
        off_step = await client.post(
            "/api/v1/reservations",
            json={"date": monday.isoformat(), "time": "10:30", "booking_type": "consultation"},
        )
        too_soon = await client.post(
            "/api/v1/reservations",
            json={"date": monday.isoformat(), "time": "09:00", "booking_type": "cake"},
        )
        inactive = await client.post(
            "/api/v1/reservations",
            json={"date": monday.isoformat(), "time": "09:00", "booking_type": "old"},
        )

    assert pending.status_code == 201, pending.text
    assert pending.json()["status"] == "pending"
    assert off_step.json()["reason"] == "outside_hours"
    assert too_soon.status_code == 409
    assert too_soon.json()["reason"] == "lead_time"
    assert inactive.status_code == 422


async def test_parallel_reservations_race(clock, monday):
    await _monday_mornings_only(clock)
    payload = {"date": monday.isoformat(), "time": "11:00"}

    async with _client() as client:

        async def post_reservation():
            return await client.post("/api/v1/reservations", json=payload)

        responses = await asyncio.gather(*(post_reservation() for _ in range(5)))

    status_codes = sorted(response.status_code for response in responses)
    assert status_codes == [201, 409, 409, 409, 409]
    assert await _booked(monday, "11:00") == 1


async def test_health_endpoints():
    async with _client() as client:
        health = await client.get("/api/v1/healthz")
        readiness = await client.get("/api/v1/readiness")

    assert health.status_code == 200
    assert health.json() == {"ok": True}
    assert readiness.status_code == 200
    assert readiness.json() == {"ready": True}
