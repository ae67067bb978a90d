# tests/test_api.py
from __future__ import annotations

import uuid

import httpx
import pytest
import pytest_asyncio
from jose import jwt

from api.main import app
from db.models import UserRole
from factories import MONDAY, create_user

pytestmark = pytest.mark.asyncio


def _auth(user) -> dict:
    token = jwt.encode({"sub": str(user.id)}, "test-secret", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(session_factory):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def _reschedule_url(seed, *tail) -> str:
    return "/".join([f"/bookings/{seed.booking.id}/reschedule", *tail])


# ----------------------------- auth -----------------------------
async def test_missing_token_is_401(client, seeded):
    r = await client.post(_reschedule_url(seeded), json={"proposed_time": "2030-01-07T14:00:00Z"})
    assert r.status_code == 401


async def test_bad_token_is_401(client, seeded):
    r = await client.get(_reschedule_url(seeded), headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


async def test_unknown_user_is_401(client, seeded):
    token = jwt.encode({"sub": str(uuid.uuid4())}, "test-secret", algorithm="HS256")
    r = await client.get(_reschedule_url(seeded), headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


async def test_inactive_user_is_403(client, db_session, seeded):
    ghost = await create_user(db_session, UserRole.STUDENT, is_active=False)
    r = await client.get(_reschedule_url(seeded), headers=_auth(ghost))
    assert r.status_code == 403


# ----------------------------- availability -----------------------------
async def test_slots_endpoint(client, seeded):
    r = await client.get(f"/tutors/{seeded.tutor.id}/slots", params={"date": MONDAY.isoformat()})
    assert r.status_code == 200
    body = r.json()
    assert [(s["start_time"], s["end_time"]) for s in body] == [("09:00:00", "09:45:00"), ("11:15:00", "17:00:00")]
    assert all(s["timezone"] == "UTC" for s in body)


async def test_slots_bad_tutor_id(client, seeded):
    r = await client.get("/tutors/not-a-uuid/slots", params={"date": MONDAY.isoformat()})
    assert r.status_code == 400


async def test_replace_availability(client, seeded):
    body = {"rules": [{"day_of_week": 3, "start_time": "08:00", "end_time": "12:00", "timezone": "Europe/Berlin"}]}
    r = await client.put(f"/tutors/{seeded.tutor.id}/availability", json=body, headers=_auth(seeded.tutor))
    assert r.status_code == 200
    assert [x["day_of_week"] for x in r.json()] == [3]

    r = await client.get(f"/tutors/{seeded.tutor.id}/availability")
    assert [(x["day_of_week"], x["timezone"]) for x in r.json()] == [(3, "Europe/Berlin")]


async def test_replace_availability_validation(client, seeded):
    body = {"rules": [{"day_of_week": 1, "start_time": "12:00", "end_time": "08:00", "timezone": "UTC"}]}
    r = await client.put(f"/tutors/{seeded.tutor.id}/availability", json=body, headers=_auth(seeded.tutor))
    assert r.status_code == 422


async def test_replace_availability_by_student_is_403(client, seeded):
    body = {"rules": []}
    r = await client.put(f"/tutors/{seeded.tutor.id}/availability", json=body, headers=_auth(seeded.student))
    assert r.status_code == 403


# ----------------------------- reschedule -----------------------------
async def test_reschedule_round_trip(client, seeded):
    r = await client.post(
        _reschedule_url(seeded), json={"proposed_time": "2030-01-07T14:00:00Z"}, headers=_auth(seeded.student)
    )
    assert r.status_code == 201
    req = r.json()
    assert req["status"] == "PENDING"
    assert req["requested_by"]["role"] == "STUDENT"

    r = await client.post(
        _reschedule_url(seeded), json={"proposed_time": "2030-01-07T15:00:00Z"}, headers=_auth(seeded.tutor)
    )
    assert r.status_code == 409

    r = await client.post(_reschedule_url(seeded, req["id"], "accept"), headers=_auth(seeded.student))
    assert r.status_code == 403

    r = await client.post(_reschedule_url(seeded, req["id"], "accept"), headers=_auth(seeded.tutor))
    assert r.status_code == 200 and r.json()["status"] == "ACCEPTED"

    r = await client.post(_reschedule_url(seeded, req["id"], "decline"), headers=_auth(seeded.tutor))
    assert r.status_code == 409

    r = await client.get(_reschedule_url(seeded), headers=_auth(seeded.student))
    assert [x["status"] for x in r.json()] == ["ACCEPTED"]

    r = await client.get("/reschedule-requests", headers=_auth(seeded.tutor))
    assert [x["id"] for x in r.json()] == [req["id"]]
    summary = r.json()[0]["booking"]
    assert summary["status"] == "CONFIRMED"
    assert summary["student"]["id"] == str(seeded.student.id)
    assert r.json()[0]["requested_by"]["name"] == "Student Test"


async def test_reschedule_error_mapping(client, seeded):
    url = _reschedule_url(seeded)
    student = _auth(seeded.student)

    r = await client.post(url, json={"proposed_time": "2020-01-01T10:00:00Z"}, headers=student)
    assert r.status_code == 422 and r.json()["error"] == "InvalidTimeError"

    r = await client.post(url, json={"proposed_time": "2030-01-07T20:00:00Z"}, headers=student)
    assert r.status_code == 422 and r.json()["error"] == "SlotUnavailableError"

    r = await client.post(url, json={"proposed_time": "2030-01-07T14:00:00"}, headers=student)
    assert r.status_code == 422

    r = await client.post(url, json={"proposed_time": "2030-01-07T14:00:00Z"}, headers=_auth(seeded.outsider))
    assert r.status_code == 403

    r = await client.post(
        f"/bookings/{uuid.uuid4()}/reschedule", json={"proposed_time": "2030-01-07T14:00:00Z"}, headers=student
    )
    assert r.status_code == 404

    r = await client.post(_reschedule_url(seeded, str(uuid.uuid4()), "cancel"), headers=student)
    assert r.status_code == 404


# ----------------------------- booking status -----------------------------
async def test_patch_booking_status(client, seeded):
    url = f"/bookings/{seeded.booking.id}/status"
    r = await client.patch(url, json={"status": "CONFIRMED"}, headers=_auth(seeded.student))
    assert r.status_code == 400

    r = await client.patch(url, json={"status": "CANCELLED"}, headers=_auth(seeded.outsider))
    assert r.status_code == 403

    r = await client.patch(url, json={"status": "CANCELLED"}, headers=_auth(seeded.student))
    assert r.status_code == 200 and r.json()["status"] == "CANCELLED"

    r = await client.post(
        _reschedule_url(seeded), json={"proposed_time": "2030-01-07T14:00:00Z"}, headers=_auth(seeded.student)
    )
    assert r.status_code == 409 and r.json()["error"] == "InvalidStateError"
