# clinicqueue/routers/admin.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import crud, schemas
from ..clock import Clock, today_slot_date
from ..database import get_db
from ..errors import QueueError
from ..schemas import Actor
from ..security import require_admin
from ..services import queue_service
from .common import get_clock, http_error
from .doctor_queue import build_queue_overview

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    responses={404: {"description": "Not found"}},
    dependencies=[Depends(require_admin)],
)


@router.post("/doctors", response_model=schemas.DoctorResponse, status_code=status.HTTP_201_CREATED)
def create_doctor(doctor: schemas.DoctorCreate, db: Session = Depends(get_db)):
    try:
        return crud.create_doctor(
            db,
            name=doctor.name,
            speciality=doctor.speciality,
            average_consultation_time=doctor.average_consultation_time,
        )
    except crud.CRUDError as e:
        raise http_error(e)


@router.get("/doctors", response_model=List[schemas.DoctorResponse])
def list_doctors(skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    return crud.get_doctors(db, skip=skip, limit=limit)


@router.get("/doctors/{doctor_id}/queue", response_model=schemas.DoctorQueueOverview)
def read_doctor_queue(
    doctor_id: int,
    slot_date: Optional[str] = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return build_queue_overview(db, doctor_id, slot_date or today_slot_date(clock()), clock)
    except crud.CRUDError as e:
        raise http_error(e)


@router.post("/appointments/{appointment_id}/cancel", response_model=schemas.AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Cancel any booking on behalf of the clinic."""
    try:
        return queue_service.cancel_appointment(db, actor, appointment_id, clock=clock)
    except (QueueError, crud.CRUDError) as e:
        raise http_error(e)
