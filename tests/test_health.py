# tests/test_health.py
from clinicqueue import crud, models
from clinicqueue.models import AppointmentStatus, DoctorStatus
from clinicqueue.schemas import Actor
from clinicqueue.services import doctor_service

from conftest import headers

API = "/api/v1"


def test_clean_database_has_no_issues(db, doctor, book, clock):
    appointment = book(doctor, "09:00")
    doctor_service.start_consultation(db, Actor.doctor(doctor.id), appointment.id, clock=clock)

    report = crud.run_consistency_checks(db)

    assert report["doctor_state_mismatches"] == []
    assert report["orphaned_consultations"] == []
    assert report["duplicate_tokens"] == []


def test_detects_and_fixes_broken_coupling(db, doctor, book):
    appointment = book(doctor, "09:00")
    # Simulate a crash between the two halves of a start-consultation
    appointment.status = AppointmentStatus.in_consult
    doctor.status = DoctorStatus.in_consult
    doctor.current_appointment_id = None
    db.commit()

    report = crud.run_consistency_checks(db)
    assert [m["doctor_id"] for m in report["doctor_state_mismatches"]] == [doctor.id]
    assert [o["appointment_id"] for o in report["orphaned_consultations"]] == [appointment.id]

    fix = crud.fix_consistency_issues(db)

    assert [f.doctor_id for f in fix.fixed_doctors] == [doctor.id]
    assert fix.fixed_doctors[0].new_status == DoctorStatus.in_clinic.value
    assert fix.fixed_appointments == [appointment.id]
    assert fix.errors == []
    db.refresh(doctor)
    db.refresh(appointment)
    assert doctor.status == DoctorStatus.in_clinic
    assert appointment.status == AppointmentStatus.in_queue
    assert crud.run_consistency_checks(db)["orphaned_consultations"] == []
    actions = [log.action for log in crud.get_audit_logs(db, doctor_id=doctor.id)]
    assert models.QueueAction.ANOMALY_FIX in actions


def test_stale_pointer_on_idle_doctor(db, doctor, book):
    appointment = book(doctor, "09:00")
    doctor.current_appointment_id = appointment.id
    db.commit()

    fix = crud.fix_consistency_issues(db)

    assert fix.fixed_doctors[0].previous_status == DoctorStatus.in_clinic.value
    db.refresh(doctor)
    assert doctor.current_appointment_id is None


def test_fix_on_healthy_queue_changes_nothing(db, doctor, book):
    book(doctor, "09:00", patient_id="p1")
    book(doctor, "09:15", patient_id="p2")
    report = crud.run_consistency_checks(db)
    assert report["duplicate_tokens"] == []

    fix = crud.fix_consistency_issues(db)

    assert fix.unresolved_duplicate_tokens == []
    assert fix.fixed_doctors == []


def test_health_endpoints_are_admin_only(client):
    assert client.get(f"{API}/health/consistency-check", headers=headers("patient", "p1")).status_code == 403
    assert client.post(f"{API}/health/fix-anomalies", headers=headers("doctor", 1)).status_code == 403

    check = client.get(f"{API}/health/consistency-check", headers=headers("admin"))
    assert check.status_code == 200
    assert check.json()["duplicate_tokens"] == []

    fix = client.post(f"{API}/health/fix-anomalies", headers=headers("admin"))
    assert fix.status_code == 200
    assert fix.json()["errors"] == []
