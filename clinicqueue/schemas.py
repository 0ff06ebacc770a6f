# clinicqueue/schemas.py
from datetime import datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, computed_field

from .models import AppointmentStatus, DoctorStatus


# --- Base Schemas ---
class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- Acting identity ---
class ActorRole(str, Enum):
    doctor = "doctor"
    patient = "patient"
    admin = "admin"


class Actor(BaseSchema):
    """Already-authenticated caller, as forwarded by the gateway."""
    role: ActorRole
    id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.admin

    @classmethod
    def doctor(cls, doctor_id) -> "Actor":
        return cls(role=ActorRole.doctor, id=str(doctor_id))

    @classmethod
    def patient(cls, patient_id) -> "Actor":
        return cls(role=ActorRole.patient, id=str(patient_id))

    @classmethod
    def admin(cls, admin_id=None) -> "Actor":
        return cls(role=ActorRole.admin, id=str(admin_id) if admin_id is not None else None)


def _validate_slot_time(v: str) -> str:
    parts = v.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError("slot_time must look like HH:MM")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError("slot_time out of range")
    return f"{hour:02d}:{minute:02d}"


# --- Doctor Schemas ---
class DoctorCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=100)
    speciality: Optional[str] = Field(None, max_length=100)
    average_consultation_time: int = Field(15, ge=1, le=240)


class DoctorResponse(BaseSchema):
    id: int
    name: str
    speciality: Optional[str] = None
    available: bool
    status: DoctorStatus
    current_appointment_id: Optional[int] = None
    average_consultation_time: int
    break_start_time: Optional[datetime] = None
    break_duration: int


class DoctorStatusUpdate(BaseSchema):
    status: DoctorStatus
    break_duration: Optional[int] = Field(None, ge=1, le=480)


class DoctorLiveStatus(BaseSchema):
    doctor_id: int
    name: str
    status: DoctorStatus
    is_available: bool
    is_in_consult: bool
    is_on_break: bool
    break_ends_at: Optional[datetime] = None


# --- Appointment Schemas ---
class AppointmentCreate(BaseSchema):
    doctor_id: int
    slot_date: str = Field(..., min_length=1, max_length=20)
    slot_time: str

    @field_validator("slot_time")
    @classmethod
    def check_slot_time(cls, v):
        return _validate_slot_time(v)


class AppointmentResponse(BaseSchema):
    id: int
    doctor_id: int
    patient_id: str
    slot_date: str
    slot_time: str
    token_number: int
    queue_position: Optional[int] = None
    estimated_wait_time: int = 0
    status: AppointmentStatus
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    consultation_duration: Optional[int] = None
    is_delayed: bool = False
    delay_reason: str = ""
    alerted: bool = False

    # Legacy views derived from status
    @computed_field
    @property
    def cancelled(self) -> bool:
        return self.status == AppointmentStatus.cancelled

    @computed_field
    @property
    def is_completed(self) -> bool:
        return self.status == AppointmentStatus.completed


class AppointmentStatusUpdate(BaseSchema):
    status: AppointmentStatus


# --- Queue Schemas ---
class QueuePosition(BaseSchema):
    queue_position: int
    estimated_wait_time: int
    total_in_queue: int


class QueueEntry(BaseSchema):
    id: int
    token_number: int
    patient_id: str
    slot_time: str
    status: AppointmentStatus
    queue_position: int


class DoctorQueueStatus(BaseSchema):
    doctor_id: int
    slot_date: str
    status: DoctorStatus
    current_appointment_id: Optional[int] = None
    queue_length: int
    appointments: List[QueueEntry] = []


class DelayRecord(BaseSchema):
    appointment_id: int
    delay_minutes: int
    token_number: int
    patient_id: Optional[str] = None


class SuggestionType(str, Enum):
    pull_next = "pull-next"
    move_followup = "move-followup"


class Suggestion(BaseSchema):
    type: SuggestionType
    message: str
    appointment_id: int
    token_number: int
    suggested_position: Optional[int] = None
    time_saved: Optional[int] = None


class PatientQueueStatus(BaseSchema):
    appointment_id: int
    token_number: int
    queue_position: Optional[int] = None
    estimated_wait_time: int = 0
    total_in_queue: int = 0
    doctor_status: DoctorStatus
    appointment_status: AppointmentStatus
    is_next_up: bool
    is_delayed: bool
    delay_minutes: int = 0


class DoctorQueueOverview(BaseSchema):
    queue_status: DoctorQueueStatus
    suggestions: List[Suggestion] = []
    delayed_appointments: List[DelayRecord] = []


# --- Doctor action bodies ---
class ConsultationStart(BaseSchema):
    appointment_id: int


class ConsultationComplete(BaseSchema):
    appointment_id: int
    mark_no_show: bool = False


class ConsultationResult(BaseSchema):
    message: str
    appointment: AppointmentResponse
    suggestions: List[Suggestion] = []


class AppointmentMove(BaseSchema):
    appointment_id: int
    new_position: int = Field(..., ge=1)


class AppointmentCancel(BaseSchema):
    appointment_id: int


class MessageResponse(BaseSchema):
    success: bool = True
    message: str


# --- Consistency Check Schemas ---
class DoctorStateInconsistency(BaseModel):
    doctor_id: int
    status: str
    current_appointment_id: Optional[int] = None
    issue: str


class OrphanedConsultation(BaseModel):
    appointment_id: int
    doctor_id: int
    slot_date: str
    issue: str


class DuplicateToken(BaseModel):
    doctor_id: int
    slot_date: str
    token_number: int
    occurrences: int


class ConsistencyReport(BaseModel):
    checked_at: datetime
    doctor_state_mismatches: List[DoctorStateInconsistency] = []
    orphaned_consultations: List[OrphanedConsultation] = []
    duplicate_tokens: List[DuplicateToken] = []


class FixedDoctorReport(BaseModel):
    doctor_id: int
    previous_status: str
    new_status: str
    details: str


class ConsistencyFixReport(BaseModel):
    checked_at: datetime
    fixed_doctors: List[FixedDoctorReport] = []
    fixed_appointments: List[int] = []
    unresolved_duplicate_tokens: List[DuplicateToken] = []
    errors: List[str] = []
