import os

from dotenv import load_dotenv
from sqlalchemy.orm import Session

from clinicqueue import models
from clinicqueue.database import SessionLocal, create_tables

DEMO_DOCTORS = [
    ("Dr. Asha Mehta", "General Medicine", 15),
    ("Dr. Rohan Iyer", "Paediatrics", 12),
    ("Dr. Kavita Rao", "Dermatology", 10),
]


def get_env(name: str, default: str = "") -> str:
    return os.getenv(name, default) or default


def upsert_doctors(db: Session):
    average_override = get_env("SEED_AVERAGE_CONSULTATION")
    for name, speciality, average in DEMO_DOCTORS:
        doctor = db.query(models.Doctor).filter(models.Doctor.name == name).first()
        average = int(average_override) if average_override else average

        if doctor:
            doctor.speciality = speciality
            doctor.average_consultation_time = average
            doctor.available = True
            action = "updated"
        else:
            doctor = models.Doctor(
                name=name,
                speciality=speciality,
                average_consultation_time=average,
                available=True,
                status=models.DoctorStatus.in_clinic,
            )
            db.add(doctor)
            action = "created"

        db.commit()
        print(f"Doctor {action}: id={doctor.id}, name='{name}', average={average} min")


def main():
    load_dotenv()
    create_tables()

    db = SessionLocal()
    try:
        upsert_doctors(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
