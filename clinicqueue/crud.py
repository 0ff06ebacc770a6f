# clinicqueue/crud.py - appointment and doctor repository
from sqlalchemy.orm import Session
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from typing import Optional, List, Dict, Any, Iterable, Sequence
import logging

from . import models, schemas
from .audit import queue_audit
from .clock import utcnow

logger = logging.getLogger(__name__)


class CRUDError(Exception):
    pass


# ==================== DOCTOR OPERATIONS ====================

def get_doctor(db: Session, doctor_id: int) -> Optional[models.Doctor]:
    try:
        return db.query(models.Doctor).filter(models.Doctor.id == doctor_id).first()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching doctor {doctor_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

def get_doctors(db: Session, skip: int = 0, limit: int = 100) -> List[models.Doctor]:
    return db.query(models.Doctor).order_by(models.Doctor.id).offset(skip).limit(limit).all()

def create_doctor(db: Session, name: str, speciality: Optional[str] = None, average_consultation_time: int = 15, **fields) -> models.Doctor:
    try:
        doctor = models.Doctor(
            name=name,
            speciality=speciality,
            average_consultation_time=average_consultation_time,
            **fields
        )
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating doctor '{name}': {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


# ==================== APPOINTMENT OPERATIONS ====================

def get_appointment(db: Session, appointment_id: int) -> Optional[models.Appointment]:
    try:
        return db.query(models.Appointment).filter(models.Appointment.id == appointment_id).first()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching appointment {appointment_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

def get_appointments_for_day(
    db: Session,
    doctor_id: int,
    slot_date: str,
    statuses: Optional[Iterable[models.AppointmentStatus]] = None,
    exclude_ids: Sequence[int] = (),
) -> List[models.Appointment]:
    """Appointments for one doctor and day, token order, optionally filtered by status."""
    try:
        query = db.query(models.Appointment).filter(
            models.Appointment.doctor_id == doctor_id,
            models.Appointment.slot_date == slot_date,
        )
        if statuses is not None:
            query = query.filter(models.Appointment.status.in_(list(statuses)))
        if exclude_ids:
            query = query.filter(~models.Appointment.id.in_(list(exclude_ids)))
        return query.order_by(models.Appointment.token_number, models.Appointment.id).all()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching appointments for doctor {doctor_id} on {slot_date}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

def get_day_queue(db: Session, doctor_id: int, slot_date: str) -> List[models.Appointment]:
    """The live day-queue: pending, in-queue and in-consult appointments by token."""
    return get_appointments_for_day(db, doctor_id, slot_date, statuses=models.ACTIVE_STATUSES)

def get_max_token(db: Session, doctor_id: int, slot_date: str) -> int:
    """Highest token ever issued for the doctor's day, cancelled bookings included."""
    try:
        value = db.query(func.max(models.Appointment.token_number)).filter(
            models.Appointment.doctor_id == doctor_id,
            models.Appointment.slot_date == slot_date,
        ).scalar()
        return int(value or 0)
    except SQLAlchemyError as e:
        logger.error(f"Error reading max token for doctor {doctor_id} on {slot_date}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

def create_appointment(db: Session, **fields) -> models.Appointment:
    """Add an appointment to the session and flush it. Does NOT commit."""
    appointment = models.Appointment(**fields)
    db.add(appointment)
    db.flush()
    return appointment

def get_patient_appointments(db: Session, patient_id: str) -> List[models.Appointment]:
    return db.query(models.Appointment).filter(
        models.Appointment.patient_id == patient_id
    ).order_by(models.Appointment.created_at.desc(), models.Appointment.id.desc()).all()


# ==================== SLOT MAP ====================

def get_booked_slot(db: Session, doctor_id: int, slot_date: str, slot_time: str) -> Optional[models.BookedSlot]:
    return db.query(models.BookedSlot).filter(
        models.BookedSlot.doctor_id == doctor_id,
        models.BookedSlot.slot_date == slot_date,
        models.BookedSlot.slot_time == slot_time,
    ).first()

def book_slot(db: Session, doctor_id: int, slot_date: str, slot_time: str) -> models.BookedSlot:
    """Does NOT commit."""
    slot = models.BookedSlot(doctor_id=doctor_id, slot_date=slot_date, slot_time=slot_time)
    db.add(slot)
    db.flush()
    return slot

def release_slot(db: Session, appointment: models.Appointment) -> int:
    """Free the slot held by an appointment so it can be rebooked. Does NOT commit."""
    slots = db.query(models.BookedSlot).filter(
        models.BookedSlot.doctor_id == appointment.doctor_id,
        models.BookedSlot.slot_date == appointment.slot_date,
        models.BookedSlot.slot_time == appointment.slot_time,
    ).all()
    count = 0
    for slot in slots:
        if slot.appointment_id in (None, appointment.id):
            db.delete(slot)
            count += 1
    return count

def get_booked_times(db: Session, doctor_id: int, slot_date: str) -> List[str]:
    rows = db.query(models.BookedSlot.slot_time).filter(
        models.BookedSlot.doctor_id == doctor_id,
        models.BookedSlot.slot_date == slot_date,
    ).order_by(models.BookedSlot.slot_time).all()
    return [row[0] for row in rows]


# ==================== DELAY FLAGS ====================

def mark_delayed(db: Session, appointment_ids: Iterable[int], reason: str) -> int:
    """Persist the delay flag for detected appointments. Commits."""
    ids = list(appointment_ids)
    if not ids:
        return 0
    try:
        count = db.query(models.Appointment).filter(
            models.Appointment.id.in_(ids),
            models.Appointment.is_delayed.is_(False),
        ).update({"is_delayed": True, "delay_reason": reason}, synchronize_session="fetch")
        db.commit()
        return count
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error flagging delayed appointments {ids}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def mark_alerted(db: Session, appointment: models.Appointment) -> models.Appointment:
    """Record that the patient was told it is their turn. Commits."""
    try:
        appointment.alerted = True
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error marking appointment {appointment.id} alerted: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


# ==================== AUDIT ====================

def get_audit_logs(db: Session, doctor_id: Optional[int] = None, appointment_id: Optional[int] = None, limit: int = 100) -> List[models.AuditLog]:
    query = db.query(models.AuditLog)
    if doctor_id is not None:
        query = query.filter(models.AuditLog.doctor_id == doctor_id)
    if appointment_id is not None:
        query = query.filter(models.AuditLog.appointment_id == appointment_id)
    return query.order_by(models.AuditLog.id.desc()).limit(limit).all()


# ==================== CONSISTENCY CHECKS ====================

def run_consistency_checks(db: Session) -> Dict[str, Any]:
    """Checks the doctor/appointment coupling and token uniqueness invariants."""
    report = {
        "checked_at": utcnow(),
        "doctor_state_mismatches": [],
        "orphaned_consultations": [],
        "duplicate_tokens": [],
    }

    # Check 1: doctor status and current appointment must agree
    for doctor in db.query(models.Doctor).all():
        issue = None
        if doctor.status == models.DoctorStatus.in_consult:
            current = get_appointment(db, doctor.current_appointment_id) if doctor.current_appointment_id else None
            if current is None:
                issue = "Doctor is 'in-consult' but has no current appointment."
            elif current.doctor_id != doctor.id:
                issue = f"Current appointment {current.id} belongs to doctor {current.doctor_id}."
            elif current.status != models.AppointmentStatus.in_consult:
                issue = f"Current appointment {current.id} is '{current.status.value}', not 'in-consult'."
        elif doctor.current_appointment_id is not None:
            issue = f"Doctor is '{doctor.status.value}' but still points at appointment {doctor.current_appointment_id}."
        if issue:
            report["doctor_state_mismatches"].append({
                "doctor_id": doctor.id,
                "status": doctor.status.value,
                "current_appointment_id": doctor.current_appointment_id,
                "issue": issue,
            })

    # Check 2: in-consult appointments their doctor is not seeing
    in_consult = db.query(models.Appointment).filter(
        models.Appointment.status == models.AppointmentStatus.in_consult
    ).all()
    for appointment in in_consult:
        doctor = appointment.doctor
        if doctor is None or doctor.current_appointment_id != appointment.id:
            report["orphaned_consultations"].append({
                "appointment_id": appointment.id,
                "doctor_id": appointment.doctor_id,
                "slot_date": appointment.slot_date,
                "issue": "Appointment is 'in-consult' but the doctor is not seeing it.",
            })

    # Check 3: duplicate tokens within a doctor's day
    duplicates = db.query(
        models.Appointment.doctor_id,
        models.Appointment.slot_date,
        models.Appointment.token_number,
        func.count(models.Appointment.id).label("occurrences"),
    ).group_by(
        models.Appointment.doctor_id, models.Appointment.slot_date, models.Appointment.token_number
    ).having(func.count(models.Appointment.id) > 1).all()
    for doctor_id, slot_date, token_number, occurrences in duplicates:
        report["duplicate_tokens"].append({
            "doctor_id": doctor_id,
            "slot_date": slot_date,
            "token_number": token_number,
            "occurrences": int(occurrences),
        })

    return report

def fix_consistency_issues(db: Session) -> schemas.ConsistencyFixReport:
    """
    Runs the consistency checks and repairs what can be repaired safely:
    doctors are put back in clinic and orphaned consultations return to the queue.
    Duplicate tokens are reported, never renumbered automatically.
    """
    issues_report = run_consistency_checks(db)

    fix_report = schemas.ConsistencyFixReport(
        checked_at=issues_report["checked_at"],
        fixed_doctors=[],
        fixed_appointments=[],
        unresolved_duplicate_tokens=[schemas.DuplicateToken(**d) for d in issues_report["duplicate_tokens"]],
        errors=[],
    )

    try:
        # Fix 1: doctor state mismatch -> back to in-clinic with no current appointment
        for issue in issues_report["doctor_state_mismatches"]:
            doctor = db.query(models.Doctor).filter(models.Doctor.id == issue["doctor_id"]).with_for_update().first()
            if doctor is None:
                fix_report.errors.append(f"Doctor {issue['doctor_id']} disappeared before it could be fixed")
                continue
            old_status = doctor.status.value
            if doctor.status == models.DoctorStatus.in_consult:
                doctor.status = models.DoctorStatus.in_clinic
            doctor.current_appointment_id = None
            db.add(doctor)
            queue_audit.log_event(
                db, models.QueueAction.ANOMALY_FIX, doctor_id=doctor.id,
                severity='WARNING', details=issue["issue"],
            )
            fix_report.fixed_doctors.append(schemas.FixedDoctorReport(
                doctor_id=doctor.id,
                previous_status=old_status,
                new_status=doctor.status.value,
                details=issue["issue"],
            ))

        # Fix 2: orphaned consultations -> back to the waiting queue
        for issue in issues_report["orphaned_consultations"]:
            appointment = db.query(models.Appointment).filter(
                models.Appointment.id == issue["appointment_id"]
            ).with_for_update().first()
            if appointment is None or appointment.status != models.AppointmentStatus.in_consult:
                continue
            appointment.status = models.AppointmentStatus.in_queue
            appointment.actual_start_time = None
            db.add(appointment)
            queue_audit.log_event(
                db, models.QueueAction.ANOMALY_FIX, doctor_id=appointment.doctor_id,
                appointment_id=appointment.id, severity='WARNING', details=issue["issue"],
            )
            fix_report.fixed_appointments.append(appointment.id)

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"FATAL error during consistency fix: {e}")
        fix_report.fixed_doctors = []
        fix_report.fixed_appointments = []
        fix_report.errors.append(f"A fatal error occurred, rolling back all changes: {str(e)}")

    return fix_report
