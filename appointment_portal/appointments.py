"""The appointment list a patient is looking at."""
from __future__ import annotations
import logging
from datetime import datetime

import httpx

from . import client
from .client import Order, Subscription
from .models import Appointment, AppointmentStatus, AppointmentView, PatientSession
from .policy import check

logger = logging.getLogger(__name__)


class AppointmentBook:
    """In-memory rows for one patient session.

    Rows are only ever replaced wholesale by ``load()``; the one local edit is
    the optimistic status change after a successful cancellation.
    """

    def __init__(self, session: PatientSession, order: Order = Order.DATE_DESC):
        self.session = session
        self.order = order
        self.appointments: list[Appointment] = []
        self.loaded = False
        self._subscription: Subscription | None = None

    async def load(self) -> list[Appointment]:
        """Re-read the patient's rows from the store."""
        try:
            rows = await client.select_appointments(self.session.email, self.order)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Loading appointments for %s failed: %s", self.session.email, exc)
            self.appointments = []
            self.loaded = False
            return self.appointments
        self.appointments = rows
        self.loaded = True
        return self.appointments

    def get(self, appt_id: str) -> Appointment | None:
        for appt in self.appointments:
            if appt.id == appt_id:
                return appt
        return None

    def mark_cancelled(self, appt_id: str) -> Appointment | None:
        for i, appt in enumerate(self.appointments):
            if appt.id == appt_id:
                updated = appt.model_copy(update={"status": AppointmentStatus.CANCELLED})
                self.appointments[i] = updated
                return updated
        return None

    def views(self, now: datetime | None = None, lead_hours: float | None = None) -> list[AppointmentView]:
        """Rows with their cancellation decision as of ``now``."""
        if now is None:
            now = datetime.now()
        result = []
        for appt in self.appointments:
            decision = check(appt, now=now, lead_hours=lead_hours)
            result.append(
                AppointmentView(
                    **appt.model_dump(),
                    cancellable=decision.eligible,
                    hours_remaining=decision.hours_remaining,
                )
            )
        return result

    async def watch(self, interval: float | None = None) -> Subscription:
        """Reload the whole list whenever the store reports a change."""
        if self._subscription is None or not self._subscription.active:
            self._subscription = await client.subscribe(self.session.email, self.load, interval)
        return self._subscription

    async def unwatch(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
