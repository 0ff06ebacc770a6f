# clinicqueue/routers/doctor_queue.py
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import crud, schemas
from ..clock import Clock, today_slot_date
from ..database import get_db
from ..errors import QueueError
from ..schemas import Actor, ActorRole
from ..security import get_doctor_id, require_doctor, require_role
from ..services import advisor, doctor_service, queue_service
from .common import get_clock, http_error

router = APIRouter(
    prefix="/doctor",
    tags=["Doctor Queue"],
    responses={404: {"description": "Not found"}},
)

require_doctor_or_admin = require_role(ActorRole.doctor, ActorRole.admin)


def build_queue_overview(db: Session, doctor_id: int, slot_date: str, clock: Clock) -> schemas.DoctorQueueOverview:
    """Queue snapshot with suggestions; overdue patients are flagged as a side effect."""
    queue_status = queue_service.get_doctor_queue_status(db, doctor_id, slot_date)
    if queue_status is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="🔍 **Not Found:** Doctor not found")

    now = clock()
    delayed = queue_service.find_delayed(db, doctor_id, slot_date, now=now)
    queue_service.flag_delayed(db, delayed, doctor_id=doctor_id)
    suggestions = advisor.suggest(db, doctor_id, slot_date, queue_status.current_appointment_id, now=now)
    return schemas.DoctorQueueOverview(
        queue_status=queue_status,
        suggestions=suggestions,
        delayed_appointments=delayed,
    )


@router.get("/queue-status", response_model=schemas.DoctorQueueOverview)
def read_queue_status(
    slot_date: Optional[str] = None,
    doctor_id: int = Depends(get_doctor_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    Today's queue for the calling doctor (or ``slot_date`` as ``D_M_YYYY``).
    Includes re-sequencing suggestions and newly delayed appointments.
    """
    try:
        return build_queue_overview(db, doctor_id, slot_date or today_slot_date(clock()), clock)
    except crud.CRUDError as e:
        raise http_error(e)


@router.post("/update-status", response_model=schemas.DoctorResponse)
def update_status(
    status_update: schemas.DoctorStatusUpdate,
    doctor_id: int = Depends(get_doctor_id),
    actor: Actor = Depends(require_doctor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return doctor_service.update_doctor_status(
            db, actor, doctor_id, status_update.status,
            break_duration=status_update.break_duration, clock=clock,
        )
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)


@router.post("/start-consultation", response_model=schemas.AppointmentResponse)
def start_consultation(
    payload: schemas.ConsultationStart,
    actor: Actor = Depends(require_doctor_or_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return doctor_service.start_consultation(db, actor, payload.appointment_id, clock=clock)
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)


@router.post("/complete-consultation", response_model=schemas.ConsultationResult)
def complete_consultation(
    payload: schemas.ConsultationComplete,
    actor: Actor = Depends(require_doctor_or_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Complete (or mark no-show) and return suggestions for who to see next."""
    try:
        appointment, suggestions = doctor_service.complete_consultation(
            db, actor, payload.appointment_id, mark_no_show=payload.mark_no_show, clock=clock,
        )
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)
    message = "Patient marked as no-show" if payload.mark_no_show else "Consultation completed"
    return schemas.ConsultationResult(
        message=message,
        appointment=schemas.AppointmentResponse.model_validate(appointment),
        suggestions=suggestions,
    )


@router.post("/move-appointment", response_model=List[schemas.AppointmentResponse])
def move_appointment(
    payload: schemas.AppointmentMove,
    actor: Actor = Depends(require_doctor_or_admin),
    db: Session = Depends(get_db),
):
    """Move a waiting patient to ``new_position``; returns the renumbered day-queue."""
    try:
        return queue_service.move_appointment(db, actor, payload.appointment_id, payload.new_position)
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)


@router.get("/suggestions", response_model=List[schemas.Suggestion])
def read_suggestions(
    slot_date: Optional[str] = None,
    current_appointment_id: Optional[int] = None,
    doctor_id: int = Depends(get_doctor_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    return advisor.suggest(db, doctor_id, slot_date or today_slot_date(now), current_appointment_id, now=now)


@router.post("/cancel-appointment", response_model=schemas.AppointmentResponse)
def cancel_appointment(
    payload: schemas.AppointmentCancel,
    actor: Actor = Depends(require_doctor_or_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return queue_service.cancel_appointment(db, actor, payload.appointment_id, clock=clock)
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)


@router.patch("/appointments/{appointment_id}/status", response_model=schemas.AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    status_update: schemas.AppointmentStatusUpdate,
    actor: Actor = Depends(require_doctor_or_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return queue_service.transition_appointment_status(
            db, actor, appointment_id, status_update.status, clock=clock,
        )
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)
