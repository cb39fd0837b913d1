from enum import Enum

from pydantic import AliasChoices, BaseModel, Field, field_validator


class AppointmentStatus(str, Enum):
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Appointment(BaseModel):
    """One row of the appointments table."""
    id: str
    patient_name: str = ""
    email: str = ""
    phone_number: str = ""
    patient_symptoms: str = ""
    date: str = ""  # free text, e.g. "2026-01-19", "19 January 2026", "26th Jan"
    start_time: str = Field(default="", validation_alias=AliasChoices("start_time", "time"))
    status: AppointmentStatus
    report_url: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value):
        return str(value) if isinstance(value, int) else value

    @field_validator("patient_name", "email", "phone_number", "patient_symptoms", "date", "start_time", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("status", mode="before")
    @classmethod
    def _status_any_case(cls, value):
        # rows written by the intake flow use lower case
        if isinstance(value, str):
            for member in AppointmentStatus:
                if member.value.lower() == value.strip().lower():
                    return member
        return value

    @field_validator("report_url", mode="before")
    @classmethod
    def _normalize_report(cls, value):
        """Empty fields and the literal text NULL both mean no report."""
        if value is None:
            return None
        if isinstance(value, str) and value.strip().upper() in ("", "NULL"):
            return None
        return value


class PatientSession(BaseModel):
    """Who is looking at the appointment list."""
    email: str

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("email must not be empty")
        return value


class CancellationDecision(BaseModel):
    eligible: bool
    hours_remaining: float = 0.0  # never negative


class CancellationNotice(BaseModel):
    """Body POSTed to the cancellation webhook."""
    appointment_id: str
    patient_name: str
    email: str
    reason: str | None = "User cancelled via dashboard"
    cancelled_at: str  # ISO-8601, UTC
    user_email: str | None = None
    date: str | None = None
    time: str | None = None


class AppointmentView(Appointment):
    """Appointment plus its current cancellation decision, for listing."""
    cancellable: bool = False
    hours_remaining: float = 0.0
