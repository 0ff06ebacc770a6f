# clinicqueue/models.py
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text,
    Enum as SQLAlchemyEnum, Boolean, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base
import enum


class AppointmentStatus(str, enum.Enum):
    pending = "pending"
    in_queue = "in-queue"
    in_consult = "in-consult"
    completed = "completed"
    no_show = "no-show"
    cancelled = "cancelled"


# Statuses that make up a doctor's live day-queue
ACTIVE_STATUSES = (AppointmentStatus.pending, AppointmentStatus.in_queue, AppointmentStatus.in_consult)
# Statuses still waiting to be seen
WAITING_STATUSES = (AppointmentStatus.pending, AppointmentStatus.in_queue)
TERMINAL_STATUSES = (AppointmentStatus.completed, AppointmentStatus.no_show, AppointmentStatus.cancelled)


class DoctorStatus(str, enum.Enum):
    in_clinic = "in-clinic"
    in_consult = "in-consult"
    on_break = "on-break"
    unavailable = "unavailable"
    online = "online"


class QueueAction(str, enum.Enum):
    BOOK = "BOOK"
    CANCEL = "CANCEL"
    STATUS_CHANGE = "STATUS_CHANGE"
    START_CONSULTATION = "START_CONSULTATION"
    COMPLETE_CONSULTATION = "COMPLETE_CONSULTATION"
    NO_SHOW = "NO_SHOW"
    MOVE = "MOVE"
    DOCTOR_STATUS = "DOCTOR_STATUS"
    DELAY_FLAG = "DELAY_FLAG"
    ALERTED = "ALERTED"
    ANOMALY_FIX = "ANOMALY_FIX"


class Doctor(Base):
    """A practitioner and their live availability state."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    speciality = Column(String(100), nullable=True)
    available = Column(Boolean, default=True, nullable=False)  # accepting bookings

    # Availability state
    status = Column(SQLAlchemyEnum(DoctorStatus, name='doctor_status'), default=DoctorStatus.in_clinic, nullable=False)
    # Non-null iff status is in_consult. No FK: appointments already reference doctors.
    current_appointment_id = Column(Integer, nullable=True)
    average_consultation_time = Column(Integer, default=15, nullable=False)  # minutes
    break_start_time = Column(DateTime(timezone=True), nullable=True)
    break_duration = Column(Integer, default=15, nullable=False)  # minutes

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    appointments = relationship("Appointment", back_populates="doctor")
    booked_slots = relationship("BookedSlot", back_populates="doctor", cascade="all, delete-orphan")


class Appointment(Base):
    """One booking in a doctor's day-queue."""
    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint('doctor_id', 'slot_date', 'token_number', name='uq_appointments_doctor_day_token'),
        Index('idx_appointments_doctor_day', 'doctor_id', 'slot_date'),
        Index('idx_appointments_patient', 'patient_id'),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(String(64), nullable=False)

    # Scheduling keys. slot_date is an opaque day key such as "5_6_2025".
    slot_date = Column(String(20), nullable=False)
    slot_time = Column(String(5), nullable=False)

    # Queue fields
    token_number = Column(Integer, nullable=False)
    queue_position = Column(Integer, nullable=True)
    estimated_wait_time = Column(Integer, default=0, nullable=False)  # minutes

    # Lifecycle. status is the single source of truth; see the properties below.
    status = Column(SQLAlchemyEnum(AppointmentStatus, name='appointment_status'), default=AppointmentStatus.pending, nullable=False)
    actual_start_time = Column(DateTime(timezone=True), nullable=True)
    actual_end_time = Column(DateTime(timezone=True), nullable=True)
    consultation_duration = Column(Integer, nullable=True)  # minutes

    is_delayed = Column(Boolean, default=False, nullable=False)
    delay_reason = Column(String(255), default="", nullable=False)
    alerted = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    doctor = relationship("Doctor", back_populates="appointments")

    @property
    def cancelled(self) -> bool:
        return self.status == AppointmentStatus.cancelled

    @property
    def is_completed(self) -> bool:
        return self.status == AppointmentStatus.completed

    def __repr__(self):
        return f"<Appointment id={self.id} doctor={self.doctor_id} day={self.slot_date} token={self.token_number} status={self.status}>"


class BookedSlot(Base):
    """Doctor slot map: a (day, time) held by a live booking."""
    __tablename__ = "booked_slots"
    __table_args__ = (
        UniqueConstraint('doctor_id', 'slot_date', 'slot_time', name='uq_booked_slots_doctor_day_time'),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    slot_date = Column(String(20), nullable=False)
    slot_time = Column(String(5), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    doctor = relationship("Doctor", back_populates="booked_slots")


class AuditLog(Base):
    """Trail of queue mutations."""
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index('idx_audit_logs_doctor_time', 'doctor_id', 'timestamp'),
    )

    id = Column(Integer, primary_key=True, index=True)
    actor_role = Column(String(20), nullable=False, default="system")
    actor_id = Column(String(64), nullable=True)
    action = Column(SQLAlchemyEnum(QueueAction, name='queue_action'), nullable=False)
    doctor_id = Column(Integer, nullable=True)
    appointment_id = Column(Integer, nullable=True)
    severity = Column(String(10), default="INFO", nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())
