"""Decide whether a patient may still cancel an appointment."""
from __future__ import annotations
import os
from datetime import datetime

from dotenv import load_dotenv

from .datetimes import resolve
from .models import Appointment, AppointmentStatus, CancellationDecision

load_dotenv()

# Older dashboard pages allowed cancelling up to 6 hours ahead, the rest 12.
# One setting now; 12 unless overridden.
CANCEL_LEAD_HOURS = float(os.getenv("CANCEL_LEAD_HOURS", "12"))


def evaluate(
    appointment: Appointment,
    resolved: datetime | None,
    now: datetime,
    lead_hours: float | None = None,
) -> CancellationDecision:
    """Cancellable only while scheduled and at least ``lead_hours`` away.

    An unresolvable start time is never cancellable.
    """
    if lead_hours is None:
        lead_hours = CANCEL_LEAD_HOURS
    if resolved is None:
        return CancellationDecision(eligible=False, hours_remaining=0.0)

    hours = (resolved - now).total_seconds() / 3600
    eligible = appointment.status == AppointmentStatus.SCHEDULED and hours >= lead_hours
    return CancellationDecision(eligible=eligible, hours_remaining=max(0.0, hours))


def check(
    appointment: Appointment,
    now: datetime | None = None,
    lead_hours: float | None = None,
) -> CancellationDecision:
    """Resolve the appointment's start and evaluate it against ``now``."""
    if now is None:
        now = datetime.now()
    resolved = resolve(appointment.date, appointment.start_time, now=now)
    return evaluate(appointment, resolved, now, lead_hours)
