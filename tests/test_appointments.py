import asyncio
import json, pathlib
from datetime import datetime

import httpx
import pytest
import respx

from appointment_portal import client as cl
from appointment_portal.appointments import AppointmentBook
from appointment_portal.models import Appointment, AppointmentStatus, PatientSession

cl._ANON_KEY = "dummy"
cl._BASE_URL = "https://project.supabase.co"

FIX = pathlib.Path(__file__).parent / "fixtures"
BASE = "https://project.supabase.co"


def _rows():
    return json.loads((FIX / "appointments_select.json").read_text())


@pytest.mark.asyncio
async def test_load_and_views():
    book = AppointmentBook(PatientSession(email=" Jane@Example.com"))
    with respx.mock(base_url=BASE) as m:
        route = m.get("/rest/v1/appointments").respond(200, json=_rows())
        await book.load()

    assert book.loaded
    assert route.calls.last.request.url.params["email"] == "ilike.jane@example.com"

    views = book.views(now=datetime(2026, 1, 18, 20, 0), lead_hours=12)
    assert [(v.id, v.cancellable) for v in views] == [("42", True), ("43", False)]
    assert views[0].hours_remaining == pytest.approx(13)
    # completed rows still report time left, just not cancellable
    assert views[1].status is AppointmentStatus.COMPLETED


@pytest.mark.asyncio
async def test_load_failure_leaves_empty_list():
    book = AppointmentBook(PatientSession(email="jane@example.com"))
    book.appointments = ["stale"]
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/v1/appointments").respond(503)
        rows = await book.load()

    assert rows == []
    assert not book.loaded


def test_mark_cancelled_only_touches_one_row():
    book = AppointmentBook(PatientSession(email="jane@example.com"))
    book.appointments = [Appointment.model_validate(r) for r in _rows()]

    updated = book.mark_cancelled("42")
    assert updated.status is AppointmentStatus.CANCELLED
    assert book.get("42").status is AppointmentStatus.CANCELLED
    assert book.get("43").status is AppointmentStatus.COMPLETED
    assert book.mark_cancelled("nope") is None


@pytest.mark.asyncio
async def test_watch_reloads_whole_list():
    rows = _rows()
    changed = [dict(rows[0], status="Cancelled"), rows[1]]
    book = AppointmentBook(PatientSession(email="jane@example.com"))

    with respx.mock(base_url=BASE) as m:
        m.get("/rest/v1/appointments").mock(
            side_effect=[httpx.Response(200, json=rows)] * 2 + [httpx.Response(200, json=changed)] * 50
        )
        await book.load()
        await book.watch(interval=0.01)
        for _ in range(100):
            if book.get("42").status is AppointmentStatus.CANCELLED:
                break
            await asyncio.sleep(0.01)
        await book.unwatch()

    assert book.get("42").status is AppointmentStatus.CANCELLED


@pytest.mark.asyncio
async def test_load_keeps_good_rows_when_some_are_malformed():
    rows = json.loads((FIX / "appointments_partial.json").read_text())
    book = AppointmentBook(PatientSession(email="jane@example.com"))
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/v1/appointments").respond(200, json=rows)
        loaded = await book.load()

    assert book.loaded
    assert [a.id for a in loaded] == ["42"]


@pytest.mark.asyncio
async def test_load_absorbs_unreadable_body():
    book = AppointmentBook(PatientSession(email="jane@example.com"))
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/v1/appointments").respond(200, content=b"<html>gateway</html>")
        rows = await book.load()

    assert rows == []
    assert not book.loaded


@pytest.mark.asyncio
async def test_watch_survives_a_failed_poll():
    rows = _rows()
    changed = [dict(rows[0], status="Cancelled"), rows[1]]
    book = AppointmentBook(PatientSession(email="jane@example.com"))

    with respx.mock(base_url=BASE) as m:
        m.get("/rest/v1/appointments").mock(
            side_effect=[httpx.Response(200, json=rows)] * 2
            + [httpx.Response(503)]
            + [httpx.Response(200, json=changed)] * 50
        )
        await book.load()
        sub = await book.watch(interval=0.01)
        for _ in range(100):
            if book.get("42").status is AppointmentStatus.CANCELLED:
                break
            await asyncio.sleep(0.01)
        assert sub.active
        await book.unwatch()

    assert book.get("42").status is AppointmentStatus.CANCELLED
