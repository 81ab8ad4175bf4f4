"""
Persistent tracking for long-running import jobs.

The job row is single-writer: only the runner mutates it, through the
functions below. The status endpoints read snapshots via ``get_import_job``.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from crm_import.core.config import settings
from crm_import.db.models import ImportJob

logger = logging.getLogger(__name__)

QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL_STATUSES = (COMPLETED, FAILED)


class JobNotFoundError(LookupError):
    """No job with this id is visible to the caller."""


class JobNotReadyError(RuntimeError):
    """The job has not reached a terminal state yet."""


class InvalidJobTransition(RuntimeError):
    """A status change that the job lifecycle does not allow."""


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def compute_progress(status: str, processed: int, total: int) -> float:
    if total <= 0:
        return 100.0 if status == COMPLETED else 0.0
    return round(min(processed, total) / total * 100, 2)


def _row_to_job(job: ImportJob, error_limit: Optional[int] = None) -> Dict[str, Any]:
    limit = settings.status_error_limit if error_limit is None else error_limit
    errors = list(job.errors or [])
    error_count = len(errors) + (job.errors_overflow or 0)
    return {
        "id": job.id,
        "tenant_id": job.tenant_id,
        "entity_type": job.entity_type,
        "status": job.status,
        "total_records": job.total_records,
        "processed_records": job.processed_records,
        "created": job.created,
        "updated": job.updated,
        "skipped": job.skipped,
        "contacts_created": job.contacts_created,
        "error_count": error_count,
        "errors": errors[:limit],
        "errors_truncated": error_count > min(len(errors), limit),
        "progress": compute_progress(job.status, job.processed_records, job.total_records),
        "error_message": job.error_message,
        "options": job.options or {},
        "created_at": _as_utc(job.created_at),
        "started_at": _as_utc(job.started_at),
        "completed_at": _as_utc(job.completed_at),
        "duration": job.duration,
    }


def _load(db: Session, job_id: str, tenant_id: Optional[str] = None) -> ImportJob:
    # Other sessions (the runner's chunks) write this row; always read it fresh
    query = db.query(ImportJob).populate_existing().filter(ImportJob.id == job_id)
    if tenant_id is not None:
        query = query.filter(ImportJob.tenant_id == tenant_id)
    job = query.first()
    if job is None:
        raise JobNotFoundError(f"Import job {job_id} not found")
    return job


def create_import_job(
    db: Session,
    *,
    tenant_id: str,
    entity_type: str,
    total_records: int,
    headers: List[str],
    options: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Create and persist a new queued import job."""
    job = ImportJob(
        tenant_id=tenant_id,
        entity_type=entity_type,
        status=QUEUED,
        total_records=total_records,
        headers=list(headers),
        options=options or {},
        errors=[],
        skipped_rows=[],
    )
    db.add(job)
    db.commit()
    logger.info("Created %s import job %s with %d rows", entity_type, job.id, total_records)
    return _row_to_job(job)


def claim_import_job(db: Session, job_id: str) -> Dict[str, Any]:
    """Move a queued job to processing."""
    job = _load(db, job_id)
    if job.status != QUEUED:
        raise InvalidJobTransition(f"Job {job_id} is {job.status}; only queued jobs can start")
    job.status = PROCESSING
    job.started_at = _now()
    db.commit()
    return _row_to_job(job)


def record_chunk_progress(
    db: Session,
    job_id: str,
    *,
    processed: int,
    created: int = 0,
    updated: int = 0,
    skipped: int = 0,
    contacts_created: int = 0,
    errors: Iterable[Dict[str, Any]] = (),
    skipped_rows: Iterable[Dict[str, Any]] = (),
    commit: bool = True,
) -> None:
    """
    Add one chunk's counters to the job.

    The runner passes ``commit=False`` so the counters land in the same
    transaction as the chunk's record writes.
    """
    if created + updated + skipped != processed:
        raise ValueError(
            f"Chunk counters do not add up: {created} + {updated} + {skipped} != {processed}"
        )

    job = _load(db, job_id)
    if job.status != PROCESSING:
        raise InvalidJobTransition(f"Job {job_id} is {job.status}; progress can only be recorded while processing")
    if job.processed_records + processed > job.total_records:
        raise ValueError(f"Job {job_id} would process more rows than it holds")

    job.processed_records += processed
    job.created += created
    job.updated += updated
    job.skipped += skipped
    job.contacts_created += contacts_created

    new_errors = list(errors)
    if new_errors:
        retained = list(job.errors or [])
        room = max(settings.job_error_retention - len(retained), 0)
        # Reassign so the JSON column is flagged dirty
        job.errors = retained + new_errors[:room]
        job.errors_overflow += len(new_errors) - min(room, len(new_errors))

    new_skipped = list(skipped_rows)
    if new_skipped:
        job.skipped_rows = list(job.skipped_rows or []) + new_skipped

    if commit:
        db.commit()


def _finish(db: Session, job: ImportJob, status: str, error_message: Optional[str] = None) -> Dict[str, Any]:
    if job.status in TERMINAL_STATUSES:
        raise InvalidJobTransition(f"Job {job.id} already {job.status}")
    completed_at = _now()
    job.status = status
    job.error_message = error_message
    job.completed_at = completed_at
    started_at = _as_utc(job.started_at) or _as_utc(job.created_at) or completed_at
    job.duration = round((completed_at - started_at).total_seconds(), 3)
    db.commit()
    return _row_to_job(job)


def complete_import_job(db: Session, job_id: str) -> Dict[str, Any]:
    """Mark a job as completed."""
    job = _load(db, job_id)
    if job.status == PROCESSING and job.processed_records != job.total_records:
        raise InvalidJobTransition(
            f"Job {job_id} processed {job.processed_records} of {job.total_records} rows"
        )
    snapshot = _finish(db, job, COMPLETED)
    logger.info(
        "Import job %s completed: %d created, %d updated, %d skipped in %.2fs",
        job_id, job.created, job.updated, job.skipped, job.duration,
    )
    return snapshot


def fail_import_job(db: Session, job_id: str, error_message: str) -> Dict[str, Any]:
    """Mark a job as failed; counters from committed chunks are kept."""
    job = _load(db, job_id)
    snapshot = _finish(db, job, FAILED, error_message)
    logger.error("Import job %s failed after %d rows: %s", job_id, job.processed_records, error_message)
    return snapshot


def get_import_job(db: Session, job_id: str, tenant_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Return a snapshot of the job, or None when it does not exist for this tenant."""
    try:
        job = _load(db, job_id, tenant_id)
    except JobNotFoundError:
        return None
    return _row_to_job(job)


def get_terminal_job(db: Session, job_id: str, tenant_id: Optional[str] = None) -> ImportJob:
    """Load a job that has finished, for building artifacts from it."""
    job = _load(db, job_id, tenant_id)
    if job.status not in TERMINAL_STATUSES:
        raise JobNotReadyError(f"Import job {job_id} is still {job.status}")
    return job


def list_import_jobs(
    db: Session,
    *,
    tenant_id: str,
    entity_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    """List the tenant's jobs, newest first, with the total count."""
    query = db.query(ImportJob).filter(ImportJob.tenant_id == tenant_id)
    if entity_type:
        query = query.filter(ImportJob.entity_type == entity_type)
    total = query.count()
    jobs = (
        query.order_by(ImportJob.created_at.desc(), ImportJob.id)
        .offset(offset)
        .limit(limit)
        .all()
    )
    return [_row_to_job(job) for job in jobs], total


def purge_expired_jobs(db: Session, *, now: Optional[datetime] = None) -> int:
    """Delete terminal jobs that finished more than ``job_retention_seconds`` ago."""
    cutoff = (now or _now()) - timedelta(seconds=settings.job_retention_seconds)
    expired = (
        db.query(ImportJob)
        .filter(ImportJob.status.in_(TERMINAL_STATUSES), ImportJob.completed_at.isnot(None))
        .all()
    )
    removed = 0
    for job in expired:
        if _as_utc(job.completed_at) < cutoff:
            db.delete(job)
            removed += 1
    if removed:
        db.commit()
        logger.info("Purged %d expired import jobs", removed)
    return removed
