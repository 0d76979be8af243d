"""
Job run repository - durable "last processed day" per user and job.
"""
from datetime import date, datetime
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_

from habit_engine.models import JobRun


class JobRunRepository:
    """Repository for JobRun data access"""

    @staticmethod
    def get(db: Session, user_id: str, job_name: str) -> Optional[JobRun]:
        return db.query(JobRun).filter(
            and_(JobRun.user_id == user_id, JobRun.job_name == job_name)
        ).first()

    @staticmethod
    def has_run_on(db: Session, user_id: str, job_name: str, day: date) -> bool:
        """Check whether the job already completed for the user on `day`"""
        job_run = JobRunRepository.get(db, user_id, job_name)
        return job_run is not None and job_run.last_run_date == day

    @staticmethod
    def mark_run(db: Session, user_id: str, job_name: str, ran_at: datetime) -> JobRun:
        """Record a successful run"""
        job_run = JobRunRepository.get(db, user_id, job_name)
        if not job_run:
            job_run = JobRun(user_id=user_id, job_name=job_name)
            db.add(job_run)

        job_run.last_run_date = ran_at.date()
        job_run.last_run_at = ran_at
        db.commit()
        db.refresh(job_run)
        return job_run
