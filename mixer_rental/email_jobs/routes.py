"""Email job status routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..database.base import get_db
from .service import get_email_stats, job_to_dict, list_jobs, retry_failed_job

router = APIRouter(tags=["email-jobs"])


@router.get("/email-jobs")
def email_jobs_status(
    job_type: str | None = None,
    status: str | None = None,
    entity_id: UUID | None = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    jobs = list_jobs(db, job_type=job_type, status=status, entity_id=entity_id, limit=limit)
    return JSONResponse({"jobs": [job_to_dict(j) for j in jobs], "stats": get_email_stats(db)})


@router.post("/email-jobs/{job_id}/retry")
def email_job_retry(job_id: str, request: Request, db: Session = Depends(get_db)):
    job = retry_failed_job(db, job_id)
    audit(db, request, "email_job_retried", str(job.id))
    db.commit()
    return JSONResponse({"ok": True, "job": job_to_dict(job)})
