# clinicqueue/services/doctor_service.py
"""Doctor availability state machine.

States: in-clinic, in-consult, on-break, unavailable, online. Entering and
leaving in-consult only happens through start/complete so that the doctor's
current appointment always points at an in-consult appointment of theirs.
"""
from datetime import timedelta
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..audit import queue_audit
from ..clock import Clock, as_utc, utcnow
from ..config import get_settings
from ..errors import DoctorNotFoundError, InvalidStateError, OwnershipError
from ..locks import day_queue_lock, doctor_lock
from ..models import AppointmentStatus, DoctorStatus
from . import advisor, queue_service

logger = structlog.get_logger(__name__)


def _require_doctor_actor(actor: schemas.Actor, doctor_id: int) -> None:
    if actor.is_admin:
        return
    if actor.role != schemas.ActorRole.doctor or actor.id != str(doctor_id):
        raise OwnershipError(f"Only doctor {doctor_id} may change their own status")


def start_consultation(db: Session, actor: schemas.Actor, appointment_id: int,
                       clock: Clock = utcnow) -> models.Appointment:
    """Doctor -> in-consult with this appointment; appointment -> in-consult."""
    appointment = queue_service.get_owned_appointment(db, actor, appointment_id)
    try:
        with day_queue_lock(db, appointment.doctor_id, appointment.slot_date) as doctor:
            db.refresh(appointment)
            if doctor is None:
                raise DoctorNotFoundError(appointment.doctor_id)
            queue_service.apply_status_change(
                db, actor, appointment, doctor, AppointmentStatus.in_consult, clock()
            )
            appointment.alerted = True
            db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(appointment)
    return appointment


def _updated_average(current: int, observed: int, weight: float) -> int:
    return max(1, int(round(current * (1 - weight) + observed * weight)))


def complete_consultation(db: Session, actor: schemas.Actor, appointment_id: int,
                          mark_no_show: bool = False,
                          clock: Clock = utcnow) -> Tuple[models.Appointment, List[schemas.Suggestion]]:
    """Finish (or no-show) an appointment, free the doctor and advise on who is next.

    Completion requires the appointment to be in-consult. A no-show may also be
    recorded for a patient still waiting in the queue.
    """
    settings = get_settings()
    appointment = queue_service.get_owned_appointment(db, actor, appointment_id)
    try:
        with day_queue_lock(db, appointment.doctor_id, appointment.slot_date) as doctor:
            db.refresh(appointment)
            now = clock()
            new_status = AppointmentStatus.no_show if mark_no_show else AppointmentStatus.completed
            queue_service.apply_status_change(db, actor, appointment, doctor, new_status, now)

            suggestions = advisor.suggest(
                db, appointment.doctor_id, appointment.slot_date, appointment.id, now=now
            )

            if (settings.adaptive_average_consultation and doctor is not None
                    and new_status == AppointmentStatus.completed
                    and appointment.consultation_duration):
                doctor.average_consultation_time = _updated_average(
                    doctor.average_consultation_time or settings.default_consultation_minutes,
                    appointment.consultation_duration,
                    settings.average_consultation_weight,
                )
            db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(appointment)
    logger.info(
        "consultation_finished",
        appointment_id=appointment.id, no_show=mark_no_show,
        duration=appointment.consultation_duration, suggestions=len(suggestions),
    )
    return appointment, suggestions


def update_doctor_status(db: Session, actor: schemas.Actor, doctor_id: int, status: DoctorStatus,
                         break_duration: Optional[int] = None, clock: Clock = utcnow) -> models.Doctor:
    """Direct availability change (break, unavailable, online, back in clinic)."""
    _require_doctor_actor(actor, doctor_id)
    try:
        with doctor_lock(db, doctor_id) as doctor:
            if doctor is None:
                raise DoctorNotFoundError(doctor_id)
            if status == DoctorStatus.in_consult:
                raise InvalidStateError("Use start-consultation to begin seeing a patient")
            if doctor.status == DoctorStatus.in_consult and doctor.current_appointment_id is not None:
                raise InvalidStateError(
                    f"Finish appointment {doctor.current_appointment_id} before changing status"
                )

            old_status = doctor.status
            doctor.status = status
            doctor.current_appointment_id = None
            if status == DoctorStatus.on_break:
                doctor.break_start_time = clock()
                doctor.break_duration = break_duration or get_settings().default_break_minutes
            elif status == DoctorStatus.in_clinic:
                doctor.break_start_time = None

            queue_audit.log_event(
                db, models.QueueAction.DOCTOR_STATUS,
                actor_role=actor.role.value, actor_id=actor.id, doctor_id=doctor.id,
                details=f"{old_status.value} -> {status.value}",
            )
            db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(doctor)
    logger.info("doctor_status_changed", doctor_id=doctor_id, old_status=old_status.value, new_status=status.value)
    return doctor


def get_doctor_live_status(db: Session, doctor_id: int) -> Optional[schemas.DoctorLiveStatus]:
    doctor = crud.get_doctor(db, doctor_id)
    if doctor is None:
        return None
    break_ends_at = None
    if doctor.status == DoctorStatus.on_break and doctor.break_start_time is not None:
        break_ends_at = as_utc(doctor.break_start_time) + timedelta(minutes=doctor.break_duration or 0)
    return schemas.DoctorLiveStatus(
        doctor_id=doctor.id,
        name=doctor.name,
        status=doctor.status,
        is_available=doctor.status == DoctorStatus.in_clinic,
        is_in_consult=doctor.status == DoctorStatus.in_consult,
        is_on_break=doctor.status == DoctorStatus.on_break,
        break_ends_at=break_ends_at,
    )
