# clinicqueue/services/booking_service.py
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..audit import queue_audit
from ..config import get_settings
from ..errors import DoctorNotFoundError, InvalidStateError, OwnershipError, QueueConflictError
from ..locks import day_queue_lock
from ..models import AppointmentStatus
from . import queue_service

logger = structlog.get_logger(__name__)


def book_appointment(db: Session, actor: schemas.Actor, booking: schemas.AppointmentCreate,
                     patient_id: Optional[str] = None) -> models.Appointment:
    """Create a booking: hold the slot, issue the next token, place it in the queue.

    Patients book for themselves; admins may book on behalf of ``patient_id``.
    Runs under the day-queue lock. A unique-constraint collision from a writer
    in another process is retried before giving up with QueueConflictError.
    """
    if actor.role == schemas.ActorRole.patient:
        patient_id = actor.id
    elif not actor.is_admin:
        raise OwnershipError("Only patients or admins can book appointments")
    if not patient_id:
        raise InvalidStateError("A patient is required to book an appointment")

    retries = get_settings().token_allocation_retries
    for attempt in range(1, retries + 1):
        try:
            with day_queue_lock(db, booking.doctor_id, booking.slot_date) as doctor:
                if doctor is None:
                    raise DoctorNotFoundError(booking.doctor_id)
                if not doctor.available:
                    raise InvalidStateError(f"Doctor {doctor.id} is not taking bookings")
                if crud.get_booked_slot(db, doctor.id, booking.slot_date, booking.slot_time):
                    raise QueueConflictError(f"Slot {booking.slot_date} {booking.slot_time} is not available")

                slot = crud.book_slot(db, doctor.id, booking.slot_date, booking.slot_time)
                token = queue_service.assign_token(db, doctor.id, booking.slot_date)
                appointment = crud.create_appointment(
                    db,
                    doctor_id=doctor.id,
                    patient_id=patient_id,
                    slot_date=booking.slot_date,
                    slot_time=booking.slot_time,
                    token_number=token,
                    status=AppointmentStatus.pending,
                    queue_position=None,
                    estimated_wait_time=0,
                )
                slot.appointment_id = appointment.id

                position = queue_service.compute_position(db, appointment.id, doctor.id, booking.slot_date)
                if position is not None:
                    appointment.queue_position = position.queue_position
                    appointment.estimated_wait_time = position.estimated_wait_time
                    appointment.status = AppointmentStatus.in_queue

                queue_audit.log_event(
                    db, models.QueueAction.BOOK,
                    actor_role=actor.role.value, actor_id=actor.id,
                    doctor_id=doctor.id, appointment_id=appointment.id,
                    details=f"token {token} for {booking.slot_date} {booking.slot_time}",
                )
                db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning("booking_collision", attempt=attempt, doctor_id=booking.doctor_id,
                           slot_date=booking.slot_date, error=str(e.orig))
            continue
        except Exception:
            db.rollback()
            raise

        db.refresh(appointment)
        logger.info("appointment_booked", appointment_id=appointment.id, doctor_id=appointment.doctor_id,
                    slot_date=appointment.slot_date, token_number=appointment.token_number,
                    queue_position=appointment.queue_position)
        return appointment

    raise QueueConflictError(
        f"Could not allocate a token for doctor {booking.doctor_id} on {booking.slot_date}; please retry"
    )
