import logging
import os
from fastapi import FastAPI, HTTPException, Depends, Header, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Literal, Optional
from pydantic import BaseModel, ValidationError
from .appointments import AppointmentBook
from .client import Order
from .executor import CancellationExecutor, StoreUpdateError, USER_MESSAGE
from .models import AppointmentView, PatientSession
from . import policy

logger = logging.getLogger(__name__)


class CancelResponse(BaseModel):
    message: str
    appointment_id: str


class CancelBody(BaseModel):
    reason: Optional[str] = None


PORTAL_KEY = os.getenv("PORTAL_API_KEY", "")
# HTTPBearer scheme so Swagger-UI can attach the Authorization header globally
auth_scheme = HTTPBearer(auto_error=False)

_ORDERS = {"desc": Order.DATE_DESC, "asc": Order.DATE_ASC, "created": Order.CREATED}

app = FastAPI(title="Appointment Portal")


def verify_key(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    """Validate Bearer token provided via Authorization header"""
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != PORTAL_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def patient_session(x_patient_email: Optional[str] = Header(None)) -> PatientSession:
    """The logged-in patient, as established by the login front end."""
    if not x_patient_email:
        raise HTTPException(status_code=401, detail="Not logged in")
    try:
        return PatientSession(email=x_patient_email)
    except ValidationError:
        raise HTTPException(status_code=401, detail="Not logged in")


@app.get("/policy", dependencies=[Depends(verify_key)])
async def get_policy():
    return {"lead_hours": policy.CANCEL_LEAD_HOURS}


@app.get("/appointments", dependencies=[Depends(verify_key)], response_model=list[AppointmentView])
async def list_appointments(
    order: Literal["desc", "asc", "created"] = Query("desc", description="date descending, date ascending or creation order"),
    session: PatientSession = Depends(patient_session),
):
    """Return the patient's appointments with whether each can still be cancelled."""
    book = AppointmentBook(session, _ORDERS[order])
    await book.load()
    return book.views()


@app.post("/appointments/{appt_id}/cancel", dependencies=[Depends(verify_key)], response_model=CancelResponse)
async def cancel(
    appt_id: str,
    body: Optional[CancelBody] = None,
    session: PatientSession = Depends(patient_session),
):
    book = AppointmentBook(session)
    await book.load()
    if not book.loaded:
        raise HTTPException(status_code=502, detail=USER_MESSAGE)
    appt = book.get(appt_id)
    if appt is None:
        raise HTTPException(status_code=404, detail="No appointment found")

    # time has passed since the list was rendered
    decision = policy.check(appt)
    if not decision.eligible:
        raise HTTPException(
            status_code=409,
            detail=f"Appointments can only be cancelled up to {policy.CANCEL_LEAD_HOURS:g} hours in advance.",
        )

    try:
        await CancellationExecutor(book).cancel(appt_id, reason=body.reason if body else None)
    except StoreUpdateError as exc:
        logger.warning("Cancel of %s for %s failed: %s", appt_id, session.email, exc.cause)
        raise HTTPException(status_code=502, detail=str(exc))
    return CancelResponse(message="cancelled", appointment_id=appt_id)
