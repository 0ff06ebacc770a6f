# clinicqueue/services/advisor.py
"""Re-sequencing suggestions after a consultation ends.

Advisory only: nothing here writes to the database. The doctor applies a
suggestion explicitly through queue_service.move_appointment or by starting
the suggested patient.
"""
from datetime import datetime
from typing import List, Optional, Sequence

import structlog
from sqlalchemy.orm import Session

from .. import crud, models
from ..clock import minutes_between, utcnow
from ..config import get_settings
from ..models import AppointmentStatus
from ..schemas import Suggestion, SuggestionType

logger = structlog.get_logger(__name__)


def elapsed_minutes(appointment: models.Appointment, now: datetime) -> Optional[int]:
    """Length of a consultation: recorded duration, else end-start, else still running."""
    if appointment.actual_start_time is None:
        return None
    if appointment.consultation_duration is not None:
        return appointment.consultation_duration
    end = appointment.actual_end_time or now
    return max(minutes_between(appointment.actual_start_time, end), 0)


def build_suggestions(
    finished: Optional[models.Appointment],
    waiting: Sequence[models.Appointment],
    average_minutes: int,
    now: datetime,
    early_finish_ratio: float = 0.5,
) -> List[Suggestion]:
    """Evaluate each heuristic independently against the waiting list (token order)."""
    suggestions: List[Suggestion] = []
    head = waiting[0] if waiting else None

    if finished is not None and head is not None:
        if finished.status == AppointmentStatus.no_show:
            suggestions.append(Suggestion(
                type=SuggestionType.pull_next,
                message="Pull next patient - Current patient no-show",
                appointment_id=head.id,
                token_number=head.token_number,
            ))
        elif finished.status == AppointmentStatus.completed:
            elapsed = elapsed_minutes(finished, now)
            if elapsed is not None and elapsed < average_minutes * early_finish_ratio:
                suggestions.append(Suggestion(
                    type=SuggestionType.pull_next,
                    message="Consultation ran short - Pull next patient",
                    appointment_id=head.id,
                    token_number=head.token_number,
                    time_saved=average_minutes - elapsed,
                ))

    # Positions are the ones stored at booking or by the last move. A head that
    # was booked behind others who have since left marks a gap at the front.
    # The head itself is a candidate for promotion.
    if head is not None and (head.queue_position or 0) > 1:
        followup = next((apt for apt in waiting if (apt.queue_position or 0) > 2), None)
        if followup is not None:
            suggestions.append(Suggestion(
                type=SuggestionType.move_followup,
                message="Move follow-up patient to fill gap",
                appointment_id=followup.id,
                token_number=followup.token_number,
                suggested_position=1,
            ))

    return suggestions


def suggest(db: Session, doctor_id: int, slot_date: str, current_appointment_id: Optional[int] = None,
            now: Optional[datetime] = None) -> List[Suggestion]:
    """Suggestions for a doctor's day given the appointment that just ended (if any)."""
    try:
        settings = get_settings()
        exclude = [current_appointment_id] if current_appointment_id is not None else []
        waiting = crud.get_appointments_for_day(
            db, doctor_id, slot_date, statuses=models.WAITING_STATUSES, exclude_ids=exclude
        )
        finished = crud.get_appointment(db, current_appointment_id) if current_appointment_id is not None else None
        if finished is not None and finished.doctor_id != doctor_id:
            finished = None

        doctor = crud.get_doctor(db, doctor_id)
        average = (doctor.average_consultation_time if doctor is not None else None) or settings.default_consultation_minutes
        return build_suggestions(finished, waiting, average, now or utcnow(), settings.early_finish_ratio)
    except Exception:
        logger.exception("suggest_failed", doctor_id=doctor_id, slot_date=slot_date)
        return []
