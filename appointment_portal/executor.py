"""Carry out a patient's cancellation.

The status change in the appointments table is the commit point. Only after
it succeeds is the local list updated and the automation webhook told about
it. A failed or slow webhook call is logged and otherwise ignored, so the
webhook may occasionally miss a cancellation but never hears about one the
table does not have.

Eligibility is not checked here; callers take a fresh decision from
``policy.check`` right before calling ``cancel``. Nothing stops two
concurrent calls for the same id: the table ends up Cancelled either way, but
the webhook may be called twice.
"""
from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from . import client
from .appointments import AppointmentBook
from .client import AppointmentNotFound
from .models import Appointment, AppointmentStatus, CancellationNotice

logger = logging.getLogger(__name__)

USER_MESSAGE = "Failed to cancel appointment. Please try again."

UpdateFn = Callable[[str, dict[str, Any]], Awaitable[Appointment]]
NotifyFn = Callable[[CancellationNotice], Awaitable[None]]


class CancellationError(Exception):
    """A cancellation that did not happen."""


class StoreUpdateError(CancellationError):
    """The appointments table refused or never acknowledged the update."""

    def __init__(self, appt_id: str, cause: Exception | None = None):
        super().__init__(USER_MESSAGE)
        self.appointment_id = appt_id
        self.cause = cause


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CancellationExecutor:
    def __init__(
        self,
        book: AppointmentBook,
        update: UpdateFn | None = None,
        notify: NotifyFn | None = None,
        clock: Callable[[], datetime] = _utcnow,
        notify_timeout: float | None = None,
    ):
        self.book = book
        self._update = update or client.update_appointment
        self._notify = notify or client.notify_cancellation
        self._clock = clock
        self._notify_timeout = notify_timeout if notify_timeout is not None else client.WEBHOOK_TIMEOUT

    async def cancel(self, appt_id: str, reason: str | None = None) -> Appointment:
        """Cancel ``appt_id`` and return the row as now held locally.

        Raises StoreUpdateError when the table update fails; in that case
        nothing local changes and no notice is sent.
        """
        try:
            stored = await self._update(appt_id, {"status": AppointmentStatus.CANCELLED.value})
        except (httpx.HTTPError, AppointmentNotFound, ValueError) as exc:
            logger.warning("Cancelling appointment %s failed: %s", appt_id, exc)
            raise StoreUpdateError(appt_id, exc) from exc
        logger.info("Appointment %s cancelled", appt_id)

        local = self.book.mark_cancelled(appt_id)
        cancelled = local or stored.model_copy(update={"status": AppointmentStatus.CANCELLED})

        await self._send_notice(cancelled, reason)
        return cancelled

    def _build_notice(self, appt: Appointment, reason: str | None) -> CancellationNotice:
        extra = {"reason": reason} if reason else {}
        return CancellationNotice(
            appointment_id=appt.id,
            patient_name=appt.patient_name,
            email=appt.email,
            cancelled_at=self._clock().isoformat(),
            user_email=self.book.session.email,
            date=appt.date or None,
            time=appt.start_time or None,
            **extra,
        )

    async def _send_notice(self, appt: Appointment, reason: str | None) -> None:
        notice = self._build_notice(appt, reason)
        try:
            await asyncio.wait_for(self._notify(notice), timeout=self._notify_timeout)
        except asyncio.TimeoutError:
            logger.warning("Cancellation notice for %s timed out after %ss", appt.id, self._notify_timeout)
        except Exception:
            logger.exception("Cancellation notice for %s failed", appt.id)
