# clinicqueue/routers/appointments.py
# Patient-facing booking and live queue status.

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import crud, schemas
from ..clock import Clock
from ..config import get_settings
from ..database import get_db
from ..errors import QueueError
from ..limiter import limiter
from ..schemas import Actor, ActorRole
from ..security import get_current_actor, require_role
from ..services import booking_service, doctor_service, queue_service
from .common import get_clock, http_error

router = APIRouter(
    tags=["Appointments"],
    responses={404: {"description": "Not found"}},
)


@router.post("/appointments", response_model=schemas.AppointmentResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_settings().booking_rate_limit)
def create_appointment(
    booking: schemas.AppointmentCreate,
    request: Request,
    patient_id: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(ActorRole.patient, ActorRole.admin)),
):
    """Book a slot: issues the next token for the doctor's day and places it in the queue."""
    try:
        return booking_service.book_appointment(db, actor, booking, patient_id=patient_id)
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)


@router.get("/appointments/mine", response_model=List[schemas.AppointmentResponse])
def list_my_appointments(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(ActorRole.patient)),
):
    return crud.get_patient_appointments(db, actor.id)


@router.get("/appointments/{appointment_id}/queue-status", response_model=schemas.PatientQueueStatus)
def read_queue_status(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock),
):
    """Live token, position and wait. Recomputed on every poll."""
    try:
        return queue_service.patient_queue_status(db, actor, appointment_id, clock=clock)
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)


@router.post("/appointments/{appointment_id}/cancel", response_model=schemas.AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(ActorRole.patient)),
    clock: Clock = Depends(get_clock),
):
    """Cancel your own booking and release its slot."""
    try:
        return queue_service.cancel_appointment(db, actor, appointment_id, clock=clock)
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)


@router.post("/appointments/{appointment_id}/alerted", response_model=schemas.MessageResponse)
def mark_alerted(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(ActorRole.patient)),
):
    try:
        queue_service.mark_alerted(db, actor, appointment_id)
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)
    return schemas.MessageResponse(message="Marked as alerted")


@router.get("/doctors/{doctor_id}/live-status", response_model=schemas.DoctorLiveStatus)
def read_doctor_live_status(doctor_id: int, db: Session = Depends(get_db)):
    live = doctor_service.get_doctor_live_status(db, doctor_id)
    if live is None:
        raise HTTPException(status_code=404, detail="🔍 **Not Found:** Doctor not found")
    return live
