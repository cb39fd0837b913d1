"""Async access to the Supabase appointments table and the n8n cancel webhook.
Uses the PostgREST interface with the project's anon key.
"""
from __future__ import annotations
import asyncio
import inspect
import logging
import os
from enum import Enum
from typing import Any, Callable

import httpx
from dotenv import load_dotenv
from pydantic import ValidationError
from .models import Appointment, CancellationNotice

load_dotenv()

logger = logging.getLogger(__name__)

_BASE_URL = os.getenv("SUPABASE_URL", "https://project.supabase.co").rstrip("/")
_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
_TABLE = os.getenv("APPOINTMENTS_TABLE", "appointments")
_CANCEL_WEBHOOK_URL = os.getenv("N8N_CANCEL_WEBHOOK_URL", "")
WEBHOOK_TIMEOUT = float(os.getenv("N8N_WEBHOOK_TIMEOUT", "10"))
_POLL_INTERVAL = float(os.getenv("STORE_POLL_INTERVAL", "5"))


class Order(str, Enum):
    DATE_ASC = "date.asc"
    DATE_DESC = "date.desc"
    CREATED = "created_at.asc"


class AppointmentNotFound(LookupError):
    """The filter matched no row."""


def _table_url() -> str:
    return f"{_BASE_URL}/rest/v1/{_TABLE}"


def _headers(**extra: str) -> dict[str, str]:
    headers = {"apikey": _ANON_KEY, "Authorization": f"Bearer {_ANON_KEY}", "Accept": "application/json"}
    headers.update(extra)
    return headers


def _ilike_exact(value: str) -> str:
    """ilike pattern matching ``value`` ignoring case.

    PostgREST reads ``*`` as ``%``, so it is narrowed to a single-character
    wildcard; callers still compare the returned emails exactly.
    """
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_").replace("*", "_")
    return f"ilike.{escaped}"


def _parse_rows(rows: list[dict]) -> list[Appointment]:
    parsed = []
    for row in rows:
        try:
            parsed.append(Appointment.model_validate(row))
        except ValidationError as exc:
            logger.warning("Skipping malformed appointment row %r: %s", row.get("id") if isinstance(row, dict) else row, exc)
    return parsed


async def select_appointments(email: str | None = None, order: Order = Order.DATE_DESC) -> list[Appointment]:
    """Return appointment rows, optionally only those booked under ``email``."""
    params = {"select": "*", "order": Order(order).value}
    if email:
        params["email"] = _ilike_exact(email.strip())
    async with httpx.AsyncClient(http2=True, timeout=15) as client:
        resp = await client.get(_table_url(), headers=_headers(), params=params)
        resp.raise_for_status()
        rows = resp.json()

    appts = _parse_rows(rows or [])
    if email:
        wanted = email.strip().lower()
        appts = [a for a in appts if a.email.strip().lower() == wanted]
    return appts


async def update_appointment(appt_id: str, fields: dict[str, Any]) -> Appointment:
    """Partially update one row and return it as stored."""
    headers = _headers(**{"Content-Type": "application/json", "Prefer": "return=representation"})
    params = {"id": f"eq.{appt_id}"}
    async with httpx.AsyncClient(http2=True, timeout=15) as client:
        resp = await client.patch(_table_url(), headers=headers, params=params, json=fields)
        resp.raise_for_status()
        rows = resp.json()

    if not rows:
        raise AppointmentNotFound(appt_id)
    return Appointment.model_validate(rows[0])


async def notify_cancellation(notice: CancellationNotice) -> None:
    """POST a cancellation notice to the n8n webhook."""
    if not _CANCEL_WEBHOOK_URL:
        logger.warning("N8N_CANCEL_WEBHOOK_URL not set, skipping notice for %s", notice.appointment_id)
        return

    async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT) as client:
        resp = await client.post(_CANCEL_WEBHOOK_URL, json=notice.model_dump(exclude_none=True))
        resp.raise_for_status()
    logger.info("Cancellation notice sent for appointment %s", notice.appointment_id)


ChangeCallback = Callable[[], Any]


class Subscription:
    """Handle returned by :func:`subscribe`; ``close()`` stops delivery."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    async def close(self) -> None:
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


def _snapshot(rows: list[Appointment]) -> dict[str, dict]:
    return {row.id: row.model_dump() for row in rows}


async def _poll(email: str, on_change: ChangeCallback, interval: float) -> None:
    previous = None
    while True:
        try:
            current = _snapshot(await select_appointments(email))
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Polling appointments for %s failed: %s", email, exc)
        else:
            if previous is not None and current != previous:
                result = on_change()
                if inspect.isawaitable(result):
                    await result
            previous = current
        await asyncio.sleep(interval)


async def subscribe(email: str, on_change: ChangeCallback, interval: float | None = None) -> Subscription:
    """Call ``on_change`` whenever rows for ``email`` are inserted, updated or deleted.

    Supabase pushes these over its realtime websocket; here the table is polled
    every ``interval`` seconds and successive snapshots are compared.
    """
    task = asyncio.create_task(_poll(email, on_change, interval or _POLL_INTERVAL))
    return Subscription(task)
