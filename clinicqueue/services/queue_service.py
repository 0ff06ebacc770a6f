# clinicqueue/services/queue_service.py
"""Per-doctor, per-day queue: tokens, positions, status transitions, delays
and manual re-ordering.

The day-queue is never cached. Every query rebuilds it from the appointment
table so patients polling for their status always see the live order.
"""
from datetime import datetime
from typing import Dict, List, Optional, Set

import structlog
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..audit import queue_audit
from ..clock import Clock, as_utc, clinic_timezone, minutes_between, utcnow
from ..config import get_settings
from ..errors import (
    AppointmentNotFoundError, DoctorNotFoundError, InvalidStateError, OwnershipError,
)
from ..locks import day_queue_lock
from ..models import AppointmentStatus, DoctorStatus

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, Set[AppointmentStatus]] = {
    AppointmentStatus.pending: {
        AppointmentStatus.in_queue, AppointmentStatus.in_consult,
        AppointmentStatus.no_show, AppointmentStatus.cancelled,
    },
    AppointmentStatus.in_queue: {
        AppointmentStatus.in_consult, AppointmentStatus.no_show, AppointmentStatus.cancelled,
    },
    AppointmentStatus.in_consult: {AppointmentStatus.completed, AppointmentStatus.no_show},
    AppointmentStatus.completed: set(),
    AppointmentStatus.no_show: set(),
    AppointmentStatus.cancelled: set(),
}

DELAY_REASON = "Doctor running behind schedule"


# ==================== OWNERSHIP ====================

def authorize(appointment: models.Appointment, actor: schemas.Actor) -> None:
    """Fail closed unless the actor owns the appointment (admins own everything)."""
    if actor.is_admin:
        return
    if actor.id is None:
        raise OwnershipError("Acting identity is missing")
    if actor.role == schemas.ActorRole.doctor and str(appointment.doctor_id) == actor.id:
        return
    if actor.role == schemas.ActorRole.patient and appointment.patient_id == actor.id:
        return
    raise OwnershipError(f"Appointment {appointment.id} does not belong to {actor.role.value} {actor.id}")


def get_owned_appointment(db: Session, actor: schemas.Actor, appointment_id: int) -> models.Appointment:
    appointment = crud.get_appointment(db, appointment_id)
    if appointment is None:
        raise AppointmentNotFoundError(appointment_id)
    authorize(appointment, actor)
    return appointment


# ==================== TOKEN ALLOCATOR ====================

def assign_token(db: Session, doctor_id: int, slot_date: str) -> int:
    """Next token for the doctor's day. Call while holding the day-queue lock."""
    token = crud.get_max_token(db, doctor_id, slot_date) + 1
    logger.debug("token_assigned", doctor_id=doctor_id, slot_date=slot_date, token_number=token)
    return token


# ==================== POSITION ESTIMATOR ====================

def _average_minutes(doctor: Optional[models.Doctor]) -> int:
    avg = doctor.average_consultation_time if doctor is not None else None
    return avg or get_settings().default_consultation_minutes


def compute_position(db: Session, appointment_id: int, doctor_id: int, slot_date: str) -> Optional[schemas.QueuePosition]:
    """Rank and projected wait of one appointment in its live day-queue.

    Returns None when the appointment is missing or no longer queued.
    """
    try:
        target = crud.get_appointment(db, appointment_id)
        if target is None or target.doctor_id != doctor_id or target.slot_date != slot_date:
            return None
        if target.status not in models.ACTIVE_STATUSES:
            return None

        queue = crud.get_day_queue(db, doctor_id, slot_date)
        before = sum(1 for apt in queue if apt.token_number < target.token_number)

        doctor = crud.get_doctor(db, doctor_id)
        avg = _average_minutes(doctor)

        to_wait = before
        current_id = doctor.current_appointment_id if doctor is not None else None
        if current_id is not None and current_id != target.id:
            consulting = next((apt for apt in queue if apt.id == current_id), None)
            # The doctor is already past this token
            if consulting is not None and consulting.token_number > target.token_number:
                to_wait = 0

        return schemas.QueuePosition(
            queue_position=max(before + 1, 1),
            estimated_wait_time=max(to_wait * avg, 0),
            total_in_queue=len(queue),
        )
    except Exception:
        logger.exception("compute_position_failed", appointment_id=appointment_id, doctor_id=doctor_id, slot_date=slot_date)
        return None


def get_doctor_queue_status(db: Session, doctor_id: int, slot_date: str) -> Optional[schemas.DoctorQueueStatus]:
    """Doctor state plus the ordered live queue for one day."""
    try:
        doctor = crud.get_doctor(db, doctor_id)
        if doctor is None:
            return None
        queue = crud.get_day_queue(db, doctor_id, slot_date)
        entries = [
            schemas.QueueEntry(
                id=apt.id,
                token_number=apt.token_number,
                patient_id=apt.patient_id,
                slot_time=apt.slot_time,
                status=apt.status,
                queue_position=index + 1,
            )
            for index, apt in enumerate(queue)
        ]
        return schemas.DoctorQueueStatus(
            doctor_id=doctor.id,
            slot_date=slot_date,
            status=doctor.status,
            current_appointment_id=doctor.current_appointment_id,
            queue_length=len(entries),
            appointments=entries,
        )
    except Exception:
        logger.exception("queue_status_failed", doctor_id=doctor_id, slot_date=slot_date)
        return None


# ==================== APPOINTMENT STATUS MACHINE ====================

def _apply_transition(appointment: models.Appointment, new_status: AppointmentStatus, now: datetime) -> None:
    old_status = appointment.status
    if new_status == old_status:
        raise InvalidStateError(f"Appointment {appointment.id} is already '{old_status.value}'")
    if new_status not in ALLOWED_TRANSITIONS[old_status]:
        raise InvalidStateError(
            f"Cannot move appointment {appointment.id} from '{old_status.value}' to '{new_status.value}'"
        )

    appointment.status = new_status
    if new_status == AppointmentStatus.in_consult:
        appointment.actual_start_time = now
    elif new_status == AppointmentStatus.completed:
        appointment.actual_end_time = now
        if appointment.actual_start_time is not None:
            appointment.consultation_duration = minutes_between(appointment.actual_start_time, now)
    if new_status in models.TERMINAL_STATUSES:
        appointment.queue_position = None
        appointment.estimated_wait_time = 0


def _couple_doctor(doctor: Optional[models.Doctor], appointment: models.Appointment,
                   new_status: AppointmentStatus) -> None:
    """Keep Doctor.status/current_appointment_id in step with the appointment."""
    if doctor is None:
        if new_status == AppointmentStatus.in_consult:
            raise DoctorNotFoundError(appointment.doctor_id)
        return

    if new_status == AppointmentStatus.in_consult:
        if doctor.status == DoctorStatus.in_consult and doctor.current_appointment_id not in (None, appointment.id):
            raise InvalidStateError(
                f"Doctor {doctor.id} is already consulting appointment {doctor.current_appointment_id}"
            )
        doctor.status = DoctorStatus.in_consult
        doctor.current_appointment_id = appointment.id
        doctor.break_start_time = None
        return

    if doctor.current_appointment_id == appointment.id or (
        doctor.status == DoctorStatus.in_consult and doctor.current_appointment_id is None
    ):
        doctor.status = DoctorStatus.in_clinic
        doctor.current_appointment_id = None


def apply_status_change(db: Session, actor: schemas.Actor, appointment: models.Appointment,
                        doctor: Optional[models.Doctor], new_status: AppointmentStatus,
                        now: datetime) -> models.Appointment:
    """Validated transition with its side effects. Caller holds the lock and commits."""
    if actor.role == schemas.ActorRole.patient and new_status != AppointmentStatus.cancelled:
        raise OwnershipError("Patients may only cancel their appointments")

    old_status = appointment.status
    _apply_transition(appointment, new_status, now)
    _couple_doctor(doctor, appointment, new_status)
    if new_status == AppointmentStatus.cancelled:
        crud.release_slot(db, appointment)

    action = {
        AppointmentStatus.cancelled: models.QueueAction.CANCEL,
        AppointmentStatus.in_consult: models.QueueAction.START_CONSULTATION,
        AppointmentStatus.completed: models.QueueAction.COMPLETE_CONSULTATION,
        AppointmentStatus.no_show: models.QueueAction.NO_SHOW,
    }.get(new_status, models.QueueAction.STATUS_CHANGE)
    queue_audit.log_event(
        db, action,
        actor_role=actor.role.value, actor_id=actor.id,
        doctor_id=appointment.doctor_id, appointment_id=appointment.id,
        details=f"{old_status.value} -> {new_status.value}",
    )
    db.add(appointment)
    if doctor is not None:
        db.add(doctor)
    db.flush()
    logger.info(
        "appointment_status_changed",
        appointment_id=appointment.id, doctor_id=appointment.doctor_id,
        old_status=old_status.value, new_status=new_status.value, actor=actor.role.value,
    )
    return appointment


def transition_appointment_status(db: Session, actor: schemas.Actor, appointment_id: int,
                                  new_status: AppointmentStatus, clock: Clock = utcnow) -> models.Appointment:
    """Move one appointment through its lifecycle under the day-queue lock."""
    appointment = get_owned_appointment(db, actor, appointment_id)
    try:
        with day_queue_lock(db, appointment.doctor_id, appointment.slot_date) as doctor:
            db.refresh(appointment)
            apply_status_change(db, actor, appointment, doctor, new_status, clock())
            db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(appointment)
    return appointment


def cancel_appointment(db: Session, actor: schemas.Actor, appointment_id: int, clock: Clock = utcnow) -> models.Appointment:
    """Cancel a booking and release its slot. Cancelled bookings leave every queue computation."""
    return transition_appointment_status(db, actor, appointment_id, AppointmentStatus.cancelled, clock=clock)


def mark_alerted(db: Session, actor: schemas.Actor, appointment_id: int) -> models.Appointment:
    appointment = get_owned_appointment(db, actor, appointment_id)
    queue_audit.log_event(
        db, models.QueueAction.ALERTED,
        actor_role=actor.role.value, actor_id=actor.id,
        doctor_id=appointment.doctor_id, appointment_id=appointment.id,
    )
    return crud.mark_alerted(db, appointment)


# ==================== DELAY DETECTOR ====================

def _scheduled_today(slot_time: str, now_local: datetime) -> Optional[datetime]:
    try:
        hour, minute = (int(part) for part in slot_time.split(":"))
        return now_local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    except (ValueError, AttributeError):
        return None


def find_delayed(db: Session, doctor_id: int, slot_date: str, now: Optional[datetime] = None,
                 threshold_minutes: Optional[int] = None) -> List[schemas.DelayRecord]:
    """Waiting appointments more than the threshold past their slot time and not yet flagged.

    Pure read: persisting the flag is up to the caller (see crud.mark_delayed).
    """
    try:
        settings = get_settings()
        threshold = settings.delay_threshold_minutes if threshold_minutes is None else threshold_minutes
        now_local = as_utc(now or utcnow()).astimezone(clinic_timezone(settings.clinic_utc_offset_minutes))

        waiting = crud.get_appointments_for_day(db, doctor_id, slot_date, statuses=models.WAITING_STATUSES)
        delayed = []
        for apt in waiting:
            if apt.is_delayed:
                continue
            scheduled = _scheduled_today(apt.slot_time, now_local)
            if scheduled is None:
                logger.warning("unparsable_slot_time", appointment_id=apt.id, slot_time=apt.slot_time)
                continue
            delay_minutes = minutes_between(scheduled, now_local)
            if delay_minutes > threshold:
                delayed.append(schemas.DelayRecord(
                    appointment_id=apt.id,
                    delay_minutes=delay_minutes,
                    token_number=apt.token_number,
                    patient_id=apt.patient_id,
                ))
        return delayed
    except Exception:
        logger.exception("find_delayed_failed", doctor_id=doctor_id, slot_date=slot_date)
        return []


def flag_delayed(db: Session, records: List[schemas.DelayRecord], reason: str = DELAY_REASON,
                 doctor_id: Optional[int] = None) -> int:
    """Persist detected delays so the next detection run skips them.

    Each record gets a DELAY_FLAG audit row, committed together with the flag.
    """
    if not records:
        return 0
    for record in records:
        queue_audit.log_event(
            db, models.QueueAction.DELAY_FLAG,
            doctor_id=doctor_id, appointment_id=record.appointment_id,
            details=f"{record.delay_minutes} min late: {reason}", severity="WARNING",
        )
    count = crud.mark_delayed(db, [r.appointment_id for r in records], reason)
    logger.info("appointments_flagged_delayed", count=count, doctor_id=doctor_id)
    return count


# ==================== PATIENT VIEW ====================

def patient_queue_status(db: Session, actor: schemas.Actor, appointment_id: int,
                         clock: Clock = utcnow) -> schemas.PatientQueueStatus:
    """Live status for the patient polling one appointment. Flags it delayed when overdue."""
    appointment = get_owned_appointment(db, actor, appointment_id)
    doctor = crud.get_doctor(db, appointment.doctor_id)
    doctor_status = doctor.status if doctor is not None else DoctorStatus.in_clinic
    position = compute_position(db, appointment.id, appointment.doctor_id, appointment.slot_date)

    is_next_up = bool(
        (doctor is not None and doctor.current_appointment_id == appointment.id)
        or (position is not None and position.queue_position == 1 and doctor_status == DoctorStatus.in_clinic)
    )

    delay_minutes = 0
    is_delayed = appointment.is_delayed
    if appointment.status in models.WAITING_STATUSES:
        settings = get_settings()
        now_local = as_utc(clock()).astimezone(clinic_timezone(settings.clinic_utc_offset_minutes))
        scheduled = _scheduled_today(appointment.slot_time, now_local)
        if scheduled is not None:
            overdue = minutes_between(scheduled, now_local)
            if overdue > settings.delay_threshold_minutes:
                delay_minutes = overdue
                is_delayed = True
                if not appointment.is_delayed:
                    flag_delayed(db, [schemas.DelayRecord(
                        appointment_id=appointment.id,
                        delay_minutes=overdue,
                        token_number=appointment.token_number,
                        patient_id=appointment.patient_id,
                    )], doctor_id=appointment.doctor_id)

    return schemas.PatientQueueStatus(
        appointment_id=appointment.id,
        token_number=appointment.token_number,
        queue_position=position.queue_position if position else None,
        estimated_wait_time=position.estimated_wait_time if position else 0,
        total_in_queue=position.total_in_queue if position else 0,
        doctor_status=doctor_status,
        appointment_status=appointment.status,
        is_next_up=is_next_up,
        is_delayed=is_delayed,
        delay_minutes=delay_minutes,
    )


# ==================== RE-ORDERING ====================

def move_appointment(db: Session, actor: schemas.Actor, appointment_id: int, new_position: int) -> List[models.Appointment]:
    """Move a queued appointment to a 1-based position and renumber the day-queue.

    Queue positions become 1..n. Token numbers are the queue's existing tokens
    handed out again in the new order, so they stay unique for the day and no
    number is ever reissued. Tokens are not renumbered from 1: once anyone has
    left the queue the waiting tokens keep their gaps, since the lower numbers
    still belong to cancelled, completed or no-show appointments.
    """
    if actor.role == schemas.ActorRole.patient:
        raise OwnershipError("Patients cannot re-order the queue")
    appointment = get_owned_appointment(db, actor, appointment_id)
    try:
        with day_queue_lock(db, appointment.doctor_id, appointment.slot_date):
            queue = crud.get_day_queue(db, appointment.doctor_id, appointment.slot_date)
            moving = next((apt for apt in queue if apt.id == appointment.id), None)
            if moving is None:
                raise InvalidStateError(
                    f"Appointment {appointment.id} is '{appointment.status.value}' and not in the queue"
                )
            if not 1 <= new_position <= len(queue):
                raise InvalidStateError(f"Position {new_position} is outside the queue (1-{len(queue)})")

            tokens = sorted(apt.token_number for apt in queue)
            queue.remove(moving)
            queue.insert(new_position - 1, moving)

            # Park tokens out of range first so the unique constraint holds between statements
            for index, apt in enumerate(queue):
                apt.token_number = -(index + 1)
            db.flush()
            for index, apt in enumerate(queue):
                apt.token_number = tokens[index]
                apt.queue_position = index + 1

            queue_audit.log_event(
                db, models.QueueAction.MOVE,
                actor_role=actor.role.value, actor_id=actor.id,
                doctor_id=appointment.doctor_id, appointment_id=appointment.id,
                details=f"moved to position {new_position}",
            )
            db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("appointment_moved", appointment_id=appointment_id, new_position=new_position)
    return crud.get_day_queue(db, appointment.doctor_id, appointment.slot_date)
