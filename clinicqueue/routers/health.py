# clinicqueue/routers/health.py
import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..database import get_db
from ..security import require_admin

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/health",
    tags=["Health Checks"],
    responses={404: {"description": "Not found"}},
)


@router.get("/consistency-check", response_model=schemas.ConsistencyReport, dependencies=[Depends(require_admin)])
def check_queue_consistency(db: Session = Depends(get_db)):
    """
    Checks that doctors and their current appointments agree and that no
    token is issued twice for a doctor's day. Admin only.
    """
    report = crud.run_consistency_checks(db=db)
    logger.info(
        "consistency_check_completed",
        doctor_state_mismatches=len(report["doctor_state_mismatches"]),
        orphaned_consultations=len(report["orphaned_consultations"]),
        duplicate_tokens=len(report["duplicate_tokens"]),
    )
    return report


@router.post("/fix-anomalies", response_model=schemas.ConsistencyFixReport, dependencies=[Depends(require_admin)])
def fix_queue_anomalies(db: Session = Depends(get_db)):
    """
    Runs the consistency checks and repairs doctor/appointment coupling.
    Returns a report of all actions taken. Admin only.
    """
    fix_report = crud.fix_consistency_issues(db=db)
    logger.info(
        "consistency_fix_completed",
        fixed_doctors=len(fix_report.fixed_doctors),
        fixed_appointments=len(fix_report.fixed_appointments),
        errors=len(fix_report.errors),
    )
    return fix_report
